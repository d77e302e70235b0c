"""Run warnings: ordered, human-facing messages with structural deduplication."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any, Union

# Either a plain string or a structured message dict
# ({"i18nId": ..., "formattedDefault": ..., "values": {...}}).
Warning = Union[str, dict[str, Any]]


def deduplicate_warnings(warnings: Iterable[Warning]) -> list[Warning]:
    """Drop structurally equal repeats, keeping first-occurrence order.

    Dict equality ignores key order, so `{"a": 1, "b": 2}` and
    `{"b": 2, "a": 1}` count as the same warning.
    """
    unique: list[Warning] = []
    for warning in warnings:
        if any(existing == warning for existing in unique):
            continue
        unique.append(warning)
    return unique


def format_warning(warning: Warning) -> str:
    """Render a warning to display text."""
    if isinstance(warning, dict):
        text = warning.get("formattedDefault")
        return str(text) if text is not None else str(warning.get("i18nId") or "")
    return str(warning)


class RunWarnings:
    """Run-scoped warning list. One instance per run; never shared between runs."""

    def __init__(self, initial: Iterable[Warning] | None = None) -> None:
        self._items: list[Warning] = list(initial or [])

    def push(self, *warnings: Warning) -> None:
        self._items.extend(warnings)

    def extend(self, warnings: Iterable[Warning]) -> None:
        self._items.extend(warnings)

    def deduplicated(self) -> list[Warning]:
        return deduplicate_warnings(self._items)

    def __iter__(self) -> Iterator[Warning]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"RunWarnings({self._items!r})"


__all__ = ["RunWarnings", "Warning", "deduplicate_warnings", "format_warning"]
