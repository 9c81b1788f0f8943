"""Grouping result contracts.

A GroupingResult is produced once per run. When the engine falls back to
singleton groups, ``degraded`` and ``fallback_reason`` make that visible to
the caller; a fallback result is never indistinguishable from a normal one.
"""

from dataclasses import dataclass, field

from issuecorpus.contracts.records import Group


@dataclass(slots=True)
class GroupingStats:
    """Counters collected during one grouping pass."""

    records: int = 0
    unique_values: int = 0
    largest_value_fanout: int = 0
    components: int = 0
    singleton_groups: int = 0
    largest_group: int = 0
    preemptive_skips: int = 0
    iteration_cap_hits: int = 0
    size_cap_hits: int = 0
    stack_trims: int = 0
    component_timeouts: int = 0
    cycle_skips: int = 0
    elapsed_seconds: float = 0.0

    @property
    def safeguard_triggers(self) -> int:
        """Total number of lossy safeguard interventions."""
        return (
            self.preemptive_skips
            + self.iteration_cap_hits
            + self.size_cap_hits
            + self.stack_trims
            + self.component_timeouts
        )

    def to_dict(self) -> dict[str, int | float]:
        return {
            "records": self.records,
            "unique_values": self.unique_values,
            "largest_value_fanout": self.largest_value_fanout,
            "components": self.components,
            "singleton_groups": self.singleton_groups,
            "largest_group": self.largest_group,
            "preemptive_skips": self.preemptive_skips,
            "iteration_cap_hits": self.iteration_cap_hits,
            "size_cap_hits": self.size_cap_hits,
            "stack_trims": self.stack_trims,
            "component_timeouts": self.component_timeouts,
            "cycle_skips": self.cycle_skips,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


@dataclass(frozen=True, slots=True)
class GroupingResult:
    """Partition of the input records into groups, largest first."""

    groups: tuple[Group, ...]
    degraded: bool = False
    fallback_reason: str | None = None
    stats: GroupingStats = field(default_factory=GroupingStats)

    def __post_init__(self) -> None:
        if self.degraded and self.fallback_reason is None:
            raise ValueError("A degraded grouping must carry a fallback_reason")
        if not self.degraded and self.fallback_reason is not None:
            raise ValueError("fallback_reason is only valid on a degraded grouping")

    def __len__(self) -> int:
        return len(self.groups)

    @property
    def record_count(self) -> int:
        return sum(len(g) for g in self.groups)
