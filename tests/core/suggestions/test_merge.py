"""候補リストのマージと説明文整形のテスト。"""

from __future__ import annotations

from game_discovery.core.models import Suggestion
from game_discovery.core.suggestions import merge_suggestions, sanitize_explanation


def _s(app_id: int, explanation: str = "") -> Suggestion:
    return Suggestion(app_id=app_id, title=f"Game {app_id}", explanation=explanation)


def test_merge_keeps_order_and_appends_new_targets() -> None:
    existing = [_s(1, "old one"), _s(2, "old two"), _s(3, "old three")]
    incoming = [_s(2, "new two"), _s(3, "new three"), _s(4, "four")]

    result = merge_suggestions(existing, incoming)

    assert [s.app_id for s in result.suggestions] == [1, 2, 3, 4]
    assert [s.explanation for s in result.suggestions] == [
        "old one",
        "new two",
        "new three",
        "four",
    ]
    assert result.new_count == 1
    assert result.added == (_s(4, "four"),)


def test_merge_keeps_old_explanation_when_new_is_empty() -> None:
    result = merge_suggestions([_s(1, "kept")], [_s(1, "")])

    assert result.suggestions == (_s(1, "kept"),)
    assert result.new_count == 0


def test_merge_never_duplicates_targets() -> None:
    result = merge_suggestions([_s(1, "a"), _s(1, "b")], [_s(2, "c"), _s(2, "d")])

    assert [s.app_id for s in result.suggestions] == [1, 2]
    assert result.suggestions[1].explanation == "d"
    assert result.new_count == 1


def test_merge_with_nothing_new_is_identity() -> None:
    existing = (_s(1, "a"), _s(2, "b"))

    assert merge_suggestions(existing, []).suggestions == existing
    assert merge_suggestions(existing, existing).suggestions == existing


def test_sanitize_removes_citations_and_markdown() -> None:
    text = "**Shares** the [moody art](https://example.com) style [1][2, 3] and `tight` combat ."

    assert sanitize_explanation(text) == "Shares the moody art style and tight combat."


def test_sanitize_truncates_on_word_boundary() -> None:
    text = "word " * 30

    cleaned = sanitize_explanation(text, max_length=22)

    assert cleaned == "word word word word…"
    assert len(cleaned) <= 22
    assert sanitize_explanation(None) == ""
