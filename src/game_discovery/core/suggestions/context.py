"""候補生成モデルへ渡すテキストコンテキストを組み立てる。"""

from __future__ import annotations

import re
from collections import Counter

from game_discovery.core.embedding.facets import strip_html
from game_discovery.core.models import GameRecord

__all__ = ["build_suggestion_context", "extract_keywords"]

MAX_DESCRIPTION_LENGTH = 900
MAX_KEYWORDS = 8
MIN_KEYWORD_LENGTH = 4

CATEGORY_ALLOWLIST = frozenset(
    {
        "single-player",
        "multi-player",
        "co-op",
        "online co-op",
        "shared/split screen co-op",
        "pvp",
        "online pvp",
        "mmo",
        "vr support",
        "vr only",
    }
)

STOPWORDS = frozenset(
    {
        "about",
        "after",
        "again",
        "also",
        "been",
        "before",
        "being",
        "both",
        "each",
        "every",
        "from",
        "game",
        "games",
        "have",
        "into",
        "just",
        "like",
        "more",
        "most",
        "much",
        "only",
        "other",
        "over",
        "play",
        "player",
        "players",
        "some",
        "such",
        "than",
        "that",
        "their",
        "them",
        "then",
        "there",
        "these",
        "they",
        "this",
        "through",
        "what",
        "when",
        "where",
        "which",
        "while",
        "will",
        "with",
        "world",
        "your",
        "you'll",
    }
)

_WORD = re.compile(r"[a-z][a-z'-]+")


def extract_keywords(text: str, *, limit: int = MAX_KEYWORDS) -> list[str]:
    """出現頻度の高い語を返す。同数なら先に現れた語を優先する。"""

    words = [
        word.strip("'-")
        for word in _WORD.findall(text.lower())
        if len(word.strip("'-")) >= MIN_KEYWORD_LENGTH and word.strip("'-") not in STOPWORDS
    ]
    counts = Counter(words)
    first_seen: dict[str, int] = {}
    for index, word in enumerate(words):
        first_seen.setdefault(word, index)
    ranked = sorted(counts, key=lambda word: (-counts[word], first_seen[word]))
    return ranked[:limit]


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    cut = text[:limit]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut + "…"


def build_suggestion_context(game: GameRecord) -> str:
    description = strip_html(game.short_description or game.detailed_description)
    lines = [f"Title: {game.title}"]
    if description:
        lines.append(f"Description: {_truncate(description, MAX_DESCRIPTION_LENGTH)}")
    if game.genres:
        lines.append(f"Genres: {', '.join(game.genres)}")
    categories = [c for c in game.categories if c.lower() in CATEGORY_ALLOWLIST]
    if categories:
        lines.append(f"Modes: {', '.join(categories)}")
    if game.developers:
        lines.append(f"Developers: {', '.join(game.developers)}")
    if game.publishers:
        lines.append(f"Publishers: {', '.join(game.publishers)}")
    if game.release_date:
        lines.append(f"Release: {game.release_date} ({game.release_state.value})")
    keywords = extract_keywords(
        strip_html(" ".join((game.short_description, game.detailed_description)))
    )
    if keywords:
        lines.append(f"Keywords: {', '.join(keywords)}")
    return "\n".join(lines)
