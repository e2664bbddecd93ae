"""Single definition of when a checklist item counts as done.

An item is complete if its flag is set OR it has an ItemDetail row. Every
rollup, listing and export goes through ``is_complete``.
"""
from __future__ import annotations

from collections.abc import Iterable
from typing import Any

_MISSING = object()


def has_detail(item: Any) -> bool:
    return getattr(item, "detail", None) is not None


def is_complete(item: Any, detail: Any = _MISSING) -> bool:
    """Resolve completion for one item.

    ``detail`` overrides the item's own relationship when details were fetched
    separately (pass ``None`` explicitly for "no detail row").
    """
    if detail is _MISSING:
        detail = getattr(item, "detail", None)
    return bool(item.is_completed) or detail is not None


def count_completed(items: Iterable[Any]) -> int:
    return sum(1 for item in items if is_complete(item))
