"""ファセットごとのテキスト抽出ルール。

各ルールはゲームのフィールドから決定的にテキストを組み立てる。ファセット固有の
手掛かりが一つも見つからなければ空文字を返し、呼び出し側はそれを no_signal として扱う。
ルールを変更したら `version` を上げること。既存の埋め込みは stale として再計算対象になる。
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum

from game_discovery.core.models import Facet, FacetStatus, GameRecord

__all__ = [
    "FACET_RULES",
    "FacetCondition",
    "FacetRule",
    "describe_facets",
    "facet_text_hash",
    "strip_html",
]

GENERIC_STEAM_TAGS = frozenset(
    {
        "steam achievements",
        "steam cloud",
        "steam trading cards",
        "steam workshop",
        "steam leaderboards",
        "family sharing",
        "save anytime",
        "subtitle options",
        "adjustable text size",
        "adjustable difficulty",
        "camera comfort",
        "playable without timed input",
        "remote play on tablet",
        "remote play on phone",
        "remote play on tv",
        "remote play together",
        "partial controller support",
        "full controller support",
        "includes level editor",
        "in-app purchases",
        "stats",
    }
)

AESTHETIC_KEYWORDS = (
    "pixel",
    "low poly",
    "cel-shaded",
    "hand-drawn",
    "hand drawn",
    "voxel",
    "2d",
    "3d",
    "retro",
    "anime",
    "manga",
    "comic",
    "noir",
    "sci-fi",
    "cyberpunk",
    "steampunk",
    "dieselpunk",
    "post-apocalyptic",
    "minimalist",
    "colorful",
    "stylized",
    "photorealistic",
    "isometric",
    "watercolor",
    "painterly",
    "monochrome",
)

MECHANICS_KEYWORDS = (
    "roguelike",
    "roguelite",
    "deckbuilder",
    "deckbuilding",
    "card",
    "shooter",
    "fps",
    "third-person",
    "metroidvania",
    "platformer",
    "soulslike",
    "extraction",
    "battle royale",
    "survival",
    "strategy",
    "rts",
    "4x",
    "tactics",
    "turn-based",
    "puzzle",
    "stealth",
    "simulation",
    "city builder",
    "base building",
    "management",
    "crafting",
    "sandbox",
    "open world",
    "rpg",
    "jrpg",
    "action rpg",
    "moba",
    "fighting",
    "racing",
    "sports",
    "rhythm",
    "tower defense",
    "bullet hell",
    "farming",
    "exploration",
)

NARRATIVE_KEYWORDS = (
    "story rich",
    "story-driven",
    "visual novel",
    "narrative",
    "mystery",
    "thriller",
    "noir",
    "choices matter",
    "multiple endings",
    "branching",
    "detective",
    "romance",
    "dating",
    "dialogue",
    "episodic",
    "character-driven",
    "lore",
    "interactive fiction",
)

MOOD_KEYWORDS: Mapping[str, tuple[str, ...]] = {
    "dark": ("dark", "grim", "bleak", "gritty", "horror", "dread"),
    "cozy": ("cozy", "cosy", "wholesome", "relaxing", "calm", "peaceful", "chill"),
    "tense": ("tense", "suspense", "intense", "tension", "survival horror"),
    "beautiful": ("beautiful", "gorgeous", "stunning", "breathtaking", "serene"),
    "eerie": ("eerie", "creepy", "unsettling", "haunting", "surreal", "liminal"),
    "whimsical": ("whimsical", "quirky", "charming", "cute", "lighthearted", "silly"),
    "brutal": ("brutal", "gore", "violent", "visceral", "punishing"),
    "melancholic": ("melancholic", "melancholy", "sad", "bittersweet", "lonely", "emotional"),
}

PLAYER_MODES: Mapping[str, tuple[str, ...]] = {
    "single-player": ("single-player", "singleplayer"),
    "multiplayer": ("multi-player", "multiplayer", "mmo"),
    "co-op": ("co-op", "cooperative"),
    "pvp": ("pvp", "competitive"),
    "online": ("online",),
}

PACING_KEYWORDS = (
    "fast-paced",
    "slow-paced",
    "real-time",
    "turn-based",
    "idle",
    "short",
    "bite-sized",
    "endless",
    "replayable",
    "difficult",
    "hardcore",
    "casual",
)

_TAG_PATTERN = re.compile(r"<[^>]+>")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
MAX_SENTENCES = 3
MAX_SENTENCE_LENGTH = 280


def strip_html(value: str) -> str:
    """Steam の説明文から HTML タグを取り除き空白を正規化する。"""

    return " ".join(_TAG_PATTERN.sub(" ", value or "").split())


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])")


def _compile(keywords: Iterable[str]) -> tuple[tuple[str, re.Pattern[str]], ...]:
    return tuple((keyword, _keyword_pattern(keyword)) for keyword in keywords)


_AESTHETIC = _compile(AESTHETIC_KEYWORDS)
_MECHANICS = _compile(MECHANICS_KEYWORDS)
_NARRATIVE = _compile(NARRATIVE_KEYWORDS)
_PACING = _compile(PACING_KEYWORDS)
_MOODS = {mood: _compile(words) for mood, words in MOOD_KEYWORDS.items()}
_MODES = {mode: _compile(words) for mode, words in PLAYER_MODES.items()}


def _meaningful_tags(game: GameRecord) -> list[str]:
    tags: list[str] = []
    for tag in (*game.genres, *game.categories):
        lowered = tag.lower()
        if lowered in GENERIC_STEAM_TAGS or len(tag) <= 2 or tag in tags:
            continue
        tags.append(tag)
    return tags


def _description(game: GameRecord) -> str:
    parts = (game.short_description, game.detailed_description)
    return strip_html(" ".join(part for part in parts if part))


def _matches(text: str, patterns: Sequence[tuple[str, re.Pattern[str]]]) -> list[str]:
    lowered = text.lower()
    return [keyword for keyword, pattern in patterns if pattern.search(lowered)]


def _matching_tags(
    tags: Iterable[str],
    patterns: Sequence[tuple[str, re.Pattern[str]]],
) -> list[str]:
    return [tag for tag in tags if _matches(tag, patterns)]


def _sentences_with(text: str, patterns: Sequence[tuple[str, re.Pattern[str]]]) -> list[str]:
    selected: list[str] = []
    for sentence in _SENTENCE_SPLIT.split(text):
        if len(sentence) > MAX_SENTENCE_LENGTH:
            sentence = sentence[:MAX_SENTENCE_LENGTH].rsplit(" ", 1)[0]
        if _matches(sentence, patterns) and sentence not in selected:
            selected.append(sentence)
        if len(selected) >= MAX_SENTENCES:
            break
    return selected


def _unique(values: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def _compose(
    game: GameRecord,
    label: str,
    signals: Sequence[str],
    sentences: Sequence[str],
) -> str:
    if not signals:
        return ""
    lines = [f"{game.title}", f"{label}: {', '.join(signals)}"]
    lines.extend(sentences)
    return "\n".join(lines)


def extract_aesthetic(game: GameRecord) -> str:
    description = _description(game)
    signals = _unique(
        [*_matching_tags(_meaningful_tags(game), _AESTHETIC), *_matches(description, _AESTHETIC)]
    )
    return _compose(game, "Visual style", signals, _sentences_with(description, _AESTHETIC))


def extract_atmosphere(game: GameRecord) -> str:
    text = " ".join([_description(game), *_meaningful_tags(game)])
    moods = [mood for mood, patterns in _MOODS.items() if _matches(text, patterns)]
    words = _unique(word for patterns in _MOODS.values() for word in _matches(text, patterns))
    if not moods:
        return ""
    all_mood_patterns = tuple(item for patterns in _MOODS.values() for item in patterns)
    sentences = _sentences_with(_description(game), all_mood_patterns)
    signals = [*moods, *(word for word in words if word not in moods)]
    return _compose(game, "Mood", signals, sentences)


def extract_mechanics(game: GameRecord) -> str:
    description = _description(game)
    tags = _meaningful_tags(game)
    signals = _unique(
        [
            *(genre for genre in game.genres if genre in tags),
            *_matching_tags(tags, _MECHANICS),
            *_matches(description, _MECHANICS),
        ]
    )
    return _compose(game, "Gameplay", signals, _sentences_with(description, _MECHANICS))


def extract_narrative(game: GameRecord) -> str:
    description = _description(game)
    signals = _unique(
        [*_matching_tags(_meaningful_tags(game), _NARRATIVE), *_matches(description, _NARRATIVE)]
    )
    return _compose(game, "Story", signals, _sentences_with(description, _NARRATIVE))


def extract_dynamics(game: GameRecord) -> str:
    categories = " ".join(game.categories)
    description = _description(game)
    modes = [
        mode
        for mode, patterns in _MODES.items()
        if _matches(categories, patterns) or _matches(description, patterns)
    ]
    pacing = _matches(description, _PACING)
    return _compose(game, "Play modes and pacing", _unique([*modes, *pacing]), [])


@dataclass(frozen=True, slots=True)
class FacetRule:
    """ファセットのテキスト抽出ルールとそのバージョン。"""

    facet: Facet
    version: int
    extractor: Callable[[GameRecord], str]

    def extract(self, game: GameRecord) -> str:
        return self.extractor(game).strip()


FACET_RULES: Mapping[Facet, FacetRule] = {
    Facet.AESTHETIC: FacetRule(Facet.AESTHETIC, 1, extract_aesthetic),
    Facet.ATMOSPHERE: FacetRule(Facet.ATMOSPHERE, 1, extract_atmosphere),
    Facet.MECHANICS: FacetRule(Facet.MECHANICS, 1, extract_mechanics),
    Facet.NARRATIVE: FacetRule(Facet.NARRATIVE, 1, extract_narrative),
    Facet.DYNAMICS: FacetRule(Facet.DYNAMICS, 1, extract_dynamics),
}


def facet_text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class FacetCondition(StrEnum):
    NOT_COMPUTED = "not_computed"
    NO_SIGNAL = "no_signal"
    COMPUTED = "computed"
    STALE = "stale"


def describe_facets(
    game: GameRecord,
    rules: Mapping[Facet, FacetRule] = FACET_RULES,
) -> dict[Facet, FacetCondition]:
    """保存済みの状態と現在のルールを突き合わせ、ファセットごとの状態を返す。"""

    conditions: dict[Facet, FacetCondition] = {}
    for facet, rule in rules.items():
        state = game.facet_states.get(facet)
        if state is None:
            conditions[facet] = FacetCondition.NOT_COMPUTED
            continue
        current_hash = facet_text_hash(rule.extract(game))
        if state.rule_version != rule.version or state.text_hash != current_hash:
            conditions[facet] = FacetCondition.STALE
        elif state.status is FacetStatus.NO_SIGNAL:
            conditions[facet] = FacetCondition.NO_SIGNAL
        elif facet in game.embeddings:
            conditions[facet] = FacetCondition.COMPUTED
        else:
            conditions[facet] = FacetCondition.NOT_COMPUTED
    return conditions
