"""候補リストのマージと説明文の整形。"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from game_discovery.core.models import Suggestion
from game_discovery.shared.types import DTO

__all__ = ["MergeResult", "merge_suggestions", "sanitize_explanation"]

_CITATION = re.compile(r"\[\d+(?:\s*[,-]\s*\d+)*\]")
_MARKDOWN = re.compile(r"\*\*|__|`|^#+\s*", re.MULTILINE)
_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
ELLIPSIS = "…"


def sanitize_explanation(text: str | None, *, max_length: int = 400) -> str:
    """引用マーカーや Markdown を取り除き、空白を詰めて長さを制限する。"""

    if not text:
        return ""
    cleaned = _LINK.sub(r"\1", text)
    cleaned = _CITATION.sub("", cleaned)
    cleaned = _MARKDOWN.sub("", cleaned)
    cleaned = " ".join(cleaned.split())
    cleaned = re.sub(r"\s+([.,;:!?])", r"\1", cleaned)
    if len(cleaned) <= max_length:
        return cleaned
    cut = cleaned[: max_length - len(ELLIPSIS)]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(" ,;:") + ELLIPSIS


@dataclass(slots=True)
class MergeResult(DTO):
    """マージ後のリストと、今回新たに加わったエントリ。"""

    suggestions: tuple[Suggestion, ...]
    added: tuple[Suggestion, ...] = field(default_factory=tuple)

    @property
    def new_count(self) -> int:
        return len(self.added)


def merge_suggestions(
    existing: Iterable[Suggestion],
    incoming: Iterable[Suggestion],
) -> MergeResult:
    """対象 appId をキーに既存リストへ新しい候補を重ねる。

    既存エントリは位置を保ったまま新しい説明で上書きし、未知の対象は末尾に追加する。
    新しい側の説明が空なら既存の説明を残す。結果に同じ対象が二度現れることはない。
    """

    merged: dict[int, Suggestion] = {}
    for suggestion in existing:
        merged.setdefault(suggestion.app_id, suggestion)

    added: list[Suggestion] = []
    added_ids: set[int] = set()
    for suggestion in incoming:
        current = merged.get(suggestion.app_id)
        if current is None:
            added_ids.add(suggestion.app_id)
        elif not suggestion.explanation:
            suggestion = Suggestion(
                app_id=suggestion.app_id,
                title=suggestion.title or current.title,
                explanation=current.explanation,
            )
        merged[suggestion.app_id] = suggestion

    for app_id in merged:
        if app_id in added_ids:
            added.append(merged[app_id])
    return MergeResult(suggestions=tuple(merged.values()), added=tuple(added))
