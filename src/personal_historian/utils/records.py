"""Pure helpers for structured records.

A record attribute is either populated or explicitly unknown (``None``).
Merging never turns a populated attribute back into an unknown one.
"""

from typing import Any, Iterable, Mapping


def is_unknown(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def merge_fields(existing: Mapping[str, Any], partial: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``partial`` into a copy of ``existing``.

    Known values in ``partial`` win; unknown values in ``partial`` are ignored
    so a previously populated attribute is never cleared.
    """
    merged = dict(existing)
    for key, value in partial.items():
        if is_unknown(value):
            continue
        merged[key] = value
    return merged


def missing_fields(record: Mapping[str, Any], attributes: Iterable[str]) -> list[str]:
    """Attributes of ``record`` that are still unknown, in ``attributes`` order."""
    return [name for name in attributes if is_unknown(record.get(name))]


def known_subset(values: Mapping[str, Any], allowed: Iterable[str]) -> dict[str, Any]:
    """Populated entries of ``values`` restricted to ``allowed`` keys."""
    allowed_set = set(allowed)
    return {
        key: value
        for key, value in values.items()
        if key in allowed_set and not is_unknown(value)
    }
