"""Shared list pipeline: filter, sort, count, paginate.

Objects are either typed ``kubernetes.client`` models (``obj.metadata.name``)
or the plain dicts returned by ``CustomObjectsApi``
(``obj["metadata"]["name"]``); the accessors below read both.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from clusterfed.models import ListResult, ResourceQuery

SORT_NAME = "name"
SORT_CREATE_TIME = "createTime"
SORT_CREATION_TIMESTAMP = "creationTimestamp"

FILTER_NAME = "name"
FILTER_LABEL = "label"

_EPOCH = datetime.min.replace(tzinfo=UTC)

SortKey = Callable[[Any, str], Any]
Filter = Callable[[Any, str, str], bool]


# --- Accessors ---


def _metadata(obj: Any) -> Any:
    if isinstance(obj, dict):
        return obj.get("metadata") or {}
    return getattr(obj, "metadata", None)


def _field(meta: Any, attr: str, key: str) -> Any:
    if meta is None:
        return None
    if isinstance(meta, dict):
        return meta.get(key)
    return getattr(meta, attr, None)


def object_name(obj: Any) -> str:
    return _field(_metadata(obj), "name", "name") or ""


def object_labels(obj: Any) -> dict[str, str]:
    return _field(_metadata(obj), "labels", "labels") or {}


def object_created(obj: Any) -> datetime:
    """Creation time as an aware datetime; missing values sort first."""
    value = _field(_metadata(obj), "creation_timestamp", "creationTimestamp")
    if value is None or value == "":
        return _EPOCH
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return _EPOCH
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


# --- Default compare / filter ---


def default_sort_key(obj: Any, sort_by: str) -> Any:
    """Sort key for *sort_by*; unknown keys fall back to creation time.

    Ties on creation time are broken by name.
    """
    if sort_by == SORT_NAME:
        return object_name(obj)
    return (object_created(obj), object_name(obj))


def _label_matches(labels: dict[str, str], expr: str) -> bool:
    key, sep, value = expr.partition("=")
    if not sep:
        return key in labels
    return labels.get(key) == value


def default_filter(obj: Any, key: str, value: str) -> bool:
    """Match *obj* against one ``filters`` entry. Unknown keys match everything."""
    if not value:
        return True
    if key == FILTER_NAME:
        return value in object_name(obj)
    if key == FILTER_LABEL:
        return _label_matches(object_labels(obj), value)
    return True


# --- Pipeline ---


def default_list(
    objects: Iterable[Any],
    query: ResourceQuery | None,
    sort_key: SortKey = default_sort_key,
    filter_fn: Filter = default_filter,
) -> ListResult:
    """Filter, sort and paginate *objects* according to *query*.

    ``total`` is the number of objects left after filtering and before
    the page window is applied.
    """
    query = query or ResourceQuery()

    selected = [
        obj for obj in objects
        if all(filter_fn(obj, key, value) for key, value in query.filters.items())
    ]
    selected.sort(key=lambda obj: sort_key(obj, query.sort_by), reverse=not query.ascending)

    total = len(selected)
    if query.page is not None:
        start = query.page.offset
        end = None if query.page.limit is None else start + query.page.limit
        selected = selected[start:end]
    return ListResult(items=selected, total=total)
