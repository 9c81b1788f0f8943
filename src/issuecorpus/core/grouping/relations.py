# src/issuecorpus/core/grouping/relations.py
"""Relation value extraction and the record/value adjacency maps.

A relation value is a normalized token taken from one of the relation
fields of a record (related URLs, artifacts, pages). Two records that share
any value are related. Values exist only for the duration of grouping.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import PurePosixPath
from urllib.parse import urlsplit

from issuecorpus.contracts.records import RELATED_ARTIFACTS, RELATED_PAGES, RELATED_URL, Record
from issuecorpus.core.config import RelationSettings
from issuecorpus.core.logging import get_logger

logger = get_logger(__name__)

_WHITESPACE_CONTROLS = re.compile(r"[\t\r\n]")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_SEPARATORS = re.compile(r"[,;]+")
_REPEATED_SEPARATORS = re.compile(r"[,;]\s*[,;]")
_WHITESPACE = re.compile(r"\s+")
_MARKUP_CHARS = re.compile(r"[<>\"']")
_PATH_INVALID_CHARS = re.compile(r"[<>\"'|*?]")
_ABSOLUTE_PATH = re.compile(r"^[a-zA-Z]:|^/[a-zA-Z]")
_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_REPEATED_SLASHES = re.compile(r"/+")


def _clean_url(value: str, key: str) -> str:
    """Reduce a URL to its path basename without extension, or its host."""
    value = _MARKUP_CHARS.sub("", _WHITESPACE.sub("", value)).strip(".")
    if not value:
        return ""
    if not _SCHEME.match(value) and "." in value and "/" not in value and len(value) < 100:
        value = f"http://{value}"

    if _SCHEME.match(value):
        try:
            parts = urlsplit(value)
        except ValueError:
            logger.debug("Unparseable URL kept as-is", record_key=key, value=value[:100])
            return value
        path, host = parts.path, parts.hostname or ""
    else:
        path, host = value, ""

    name = PurePosixPath(path).name
    if name:
        return PurePosixPath(name).stem or name
    return host


def _clean_artifact(value: str) -> str:
    value = value.replace("\\", "/")
    value = _REPEATED_SLASHES.sub("/", value)
    value = _PATH_INVALID_CHARS.sub("", value).strip()
    if not _ABSOLUTE_PATH.match(value):
        value = value.strip("/")
    if not value.replace("/", ""):
        return ""
    return value


def _clean_page(value: str) -> str:
    return _MARKUP_CHARS.sub("", _WHITESPACE.sub(" ", value)).strip()


_FIELD_CLEANERS = {
    RELATED_URL: lambda value, key: _clean_url(value, key),
    RELATED_ARTIFACTS: lambda value, key: _clean_artifact(value),
    RELATED_PAGES: lambda value, key: _clean_page(value),
}


def _malformations(raw: str) -> list[str]:
    found = []
    if _REPEATED_SEPARATORS.search(raw):
        found.append("repeated separators")
    stripped = raw.strip()
    if stripped[:1] in (",", ";"):
        found.append("leading separator")
    if stripped[-1:] in (",", ";"):
        found.append("trailing separator")
    return found


def sanitize_field(raw: str | None, field: str, key: str, settings: RelationSettings) -> list[str]:
    """Split and clean one relation field into relation values.

    Args:
        raw: Raw field content (comma/semicolon separated)
        field: Relation field name, selects the per-field cleaner
        key: Record key, for diagnostics only
        settings: Sanitization bounds

    Returns:
        Cleaned values in field order. May contain duplicates; callers
        de-duplicate per record.
    """
    if not raw or not raw.strip():
        return []

    if len(raw) > settings.max_field_length:
        logger.debug(
            "Relation field truncated",
            record_key=key,
            field=field,
            length=len(raw),
            max_length=settings.max_field_length,
        )
        raw = raw[: settings.max_field_length]

    malformations = _malformations(raw)
    if malformations:
        logger.debug("Malformed relation field", record_key=key, field=field, malformations=malformations)

    text = _CONTROL_CHARS.sub("", _WHITESPACE_CONTROLS.sub(" ", raw))
    values = [v for v in (_WHITESPACE.sub(" ", part).strip() for part in _SEPARATORS.split(text)) if v]

    if len(values) > settings.max_values_per_field:
        logger.debug(
            "Relation field has too many values",
            record_key=key,
            field=field,
            count=len(values),
            max_values=settings.max_values_per_field,
        )
        values = values[: settings.max_values_per_field]

    cleaner = _FIELD_CLEANERS.get(field)
    cleaned: list[str] = []
    for value in values:
        if len(value) < settings.min_value_length:
            continue
        if len(value) > settings.max_value_length:
            value = value[: settings.max_value_length]
        if cleaner is not None:
            value = cleaner(value, key)
        if len(value) >= settings.min_value_length:
            cleaned.append(value)
    return cleaned


def extract_relation_values(record: Record, settings: RelationSettings) -> list[str]:
    """All relation values of a record, de-duplicated, first occurrence wins."""
    seen: dict[str, None] = {}
    for field, raw in record.relation_fields.items():
        for value in sanitize_field(raw, field, record.key, settings):
            seen.setdefault(value, None)
    return list(seen)


@dataclass(frozen=True)
class RelationGraph:
    """Bipartite record/value adjacency.

    Both maps are insertion-ordered, so traversal order is a function of
    the input order alone. Every record key appears in ``keys`` (possibly
    with no values); every value appears in ``values`` with at least one key.
    """

    values: dict[str, list[str]]
    keys: dict[str, list[str]]

    @classmethod
    def build(cls, records: Sequence[Record], settings: RelationSettings) -> "RelationGraph":
        """Build the adjacency maps from records in input order.

        Raises:
            ValueError: If two records share a key
        """
        values: dict[str, list[str]] = {}
        keys: dict[str, list[str]] = {}
        for record in records:
            if record.key in keys:
                raise ValueError(f"Duplicate record key in grouping input: {record.key!r}")
            record_values = extract_relation_values(record, settings)
            keys[record.key] = record_values
            for value in record_values:
                values.setdefault(value, []).append(record.key)
        return cls(values=values, keys=keys)

    def fanout(self, key: str) -> int:
        """Sum of the number of records sharing each of ``key``'s values."""
        return sum(len(self.values[value]) for value in self.keys[key])

    def largest_value_fanout(self) -> int:
        return max((len(members) for members in self.values.values()), default=0)
