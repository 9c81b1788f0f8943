"""Record, group, batch and page contracts.

Records are immutable for the duration of a run. Groups and batches only
carry references (keys) or the records themselves; nothing here touches
storage.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

# Column names of the relation fields in the upstream issues table.
RELATED_URL = "related_url"
RELATED_ARTIFACTS = "related_artifacts"
RELATED_PAGES = "related_pages"
RELATION_FIELDS: tuple[str, ...] = (RELATED_URL, RELATED_ARTIFACTS, RELATED_PAGES)


@dataclass(frozen=True, slots=True)
class Record:
    """One issue-tracker ticket as loaded from the store."""

    key: str
    title: str | None = None
    description: str | None = None
    summary: str | None = None
    resolution: str | None = None
    comments: str | None = None
    related_url: str | None = None
    related_artifacts: str | None = None
    related_pages: str | None = None

    def __post_init__(self) -> None:
        if not self.key:
            raise ValueError("Record key is required and cannot be empty")

    @property
    def text(self) -> str:
        """Free-text fields joined by a space, empty ones dropped."""
        parts = (self.title, self.description, self.summary, self.resolution, self.comments)
        return " ".join(p for p in parts if p and p.strip())

    @property
    def relation_fields(self) -> dict[str, str | None]:
        return {
            RELATED_URL: self.related_url,
            RELATED_ARTIFACTS: self.related_artifacts,
            RELATED_PAGES: self.related_pages,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Record":
        """Build a Record from an upstream row mapping.

        The upstream loader names the key ``issue_key`` and the resolution
        ``resolution_description``.
        """
        return cls(
            key=row["issue_key"],
            title=row["title"],
            description=row["description"],
            summary=row["summary"],
            resolution=row["resolution_description"],
            comments=row["comments"],
            related_url=row["related_url"],
            related_artifacts=row["related_artifacts"],
            related_pages=row["related_pages"],
        )


@dataclass(frozen=True, slots=True)
class Group:
    """Record keys connected through shared relation values.

    Keys are in discovery order. ``truncated`` is set when a safeguard
    stopped the component search early, so the group may be a subset of
    the true connected component.
    """

    keys: tuple[str, ...]
    truncated: bool = False

    def __len__(self) -> int:
        return len(self.keys)


@dataclass(frozen=True, slots=True)
class Batch:
    """Size-bounded, group-preserving chunk of records for the scorer.

    ``split_group`` marks a batch cut from a group larger than the target
    size; such a batch holds part of exactly one group.
    """

    index: int
    records: tuple[Record, ...]
    group_count: int
    split_group: bool = False

    def __len__(self) -> int:
        return len(self.records)

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(r.key for r in self.records)


@dataclass(frozen=True, slots=True)
class Page:
    """One page from the paginated record reader.

    ``done`` means the reader reached the end of the data.
    ``retries_exhausted`` means the read failed after every retry; the
    caller must stop or back off, NOT treat the empty page as end of data.
    ``invalid_rows`` counts upstream rows dropped for lacking a key; they
    still occupy offsets, so the next page starts at ``next_offset``.
    """

    records: tuple[Record, ...]
    offset: int
    done: bool = False
    retries_exhausted: bool = False
    error: str | None = field(default=None)
    invalid_rows: int = 0

    def __post_init__(self) -> None:
        if self.done and self.retries_exhausted:
            raise ValueError("A page cannot be both done and retries_exhausted")
        if self.retries_exhausted and self.records:
            raise ValueError("A retries_exhausted page carries no records")
        if self.retries_exhausted and self.error is None:
            raise ValueError("A retries_exhausted page must carry the error message")
        if self.invalid_rows < 0:
            raise ValueError(f"invalid_rows must be non-negative, got {self.invalid_rows}")

    def __len__(self) -> int:
        return len(self.records)

    @property
    def next_offset(self) -> int:
        return self.offset + len(self.records) + self.invalid_rows
