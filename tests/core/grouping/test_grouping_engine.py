# tests/core/grouping/test_grouping_engine.py
"""Tests for GroupingEngine connected components and safeguards."""

from collections import Counter

from issuecorpus.contracts import GroupingResult, Record
from issuecorpus.core.clock import MockClock
from issuecorpus.core.config import SafeguardSettings
from issuecorpus.core.grouping import GroupingEngine


class TickingClock(MockClock):
    """MockClock whose monotonic time advances on every read."""

    def __init__(self, step: float) -> None:
        super().__init__()
        self._step = step

    def monotonic(self) -> float:
        self.advance(self._step)
        return super().monotonic()


def _page_records(links: dict[str, str | None]) -> list[Record]:
    return [Record(key=key, related_pages=value) for key, value in links.items()]


def _assert_partition(result: GroupingResult, records: list[Record]) -> None:
    counts = Counter(key for group in result.groups for key in group.keys)
    assert set(counts) == {r.key for r in records}
    assert all(n == 1 for n in counts.values())


class TestConnectedComponents:
    """Groups are the components of the shared-value graph."""

    def test_shared_values_scenario(self) -> None:
        records = _page_records({"A": "x", "B": "x", "C": "y", "D": "y", "E": None, "F": "x"})

        result = GroupingEngine(clock=MockClock()).group(records)

        assert not result.degraded
        assert [set(g.keys) for g in result.groups] == [{"A", "B", "F"}, {"C", "D"}, {"E"}]
        # Discovery order: explicit stack pops the last pushed neighbour first
        assert result.groups[0].keys == ("A", "F", "B")
        assert result.stats.components == 3
        assert result.stats.singleton_groups == 1
        assert result.stats.largest_group == 3
        assert not any(g.truncated for g in result.groups)

    def test_transitive_links_join_one_group(self) -> None:
        records = [
            Record(key="A", related_url="http://h.example/one.html"),
            Record(key="B", related_url="https://other.example/x/one.htm", related_artifacts="lib/b.jar"),
            Record(key="C", related_artifacts="lib\\b.jar"),
        ]

        result = GroupingEngine(clock=MockClock()).group(records)

        assert len(result.groups) == 1
        assert set(result.groups[0].keys) == {"A", "B", "C"}

    def test_empty_input(self) -> None:
        result = GroupingEngine(clock=MockClock()).group([])

        assert result.groups == ()
        assert not result.degraded

    def test_equal_sized_groups_keep_discovery_order(self) -> None:
        records = _page_records({"P": "p", "R": "r", "Q": "p", "S": "r", "T": None})

        result = GroupingEngine(clock=MockClock()).group(records)

        assert [set(g.keys) for g in result.groups] == [{"P", "Q"}, {"R", "S"}, {"T"}]

    def test_without_cycle_detection(self) -> None:
        records = _page_records({"A": "t", "B": "t", "C": "t"})

        result = GroupingEngine(SafeguardSettings(cycle_detection=False), clock=MockClock()).group(records)

        assert len(result.groups) == 1
        assert set(result.groups[0].keys) == {"A", "B", "C"}
        assert result.stats.cycle_skips >= 1

    def test_deterministic_for_same_input(self) -> None:
        records = _page_records({f"K{i}": f"v{i % 7}, w{i % 5}" for i in range(60)})
        engine = GroupingEngine(clock=MockClock())

        assert engine.group(records).groups == engine.group(records).groups


class TestSafeguards:
    """Per-component bounds cut groups short without breaking the partition."""

    def test_hub_records_become_preemptive_singletons(self) -> None:
        records = [Record(key=f"K{i:05d}", related_pages="hub") for i in range(10_000)]

        result = GroupingEngine(SafeguardSettings(max_group_size=500), clock=MockClock()).group(records)

        assert not result.degraded
        assert all(len(g) <= 500 for g in result.groups)
        assert result.stats.preemptive_skips == 10_000
        assert result.stats.largest_value_fanout == 10_000
        _assert_partition(result, records)

    def test_size_cap_bounds_hub_groups(self) -> None:
        records = [Record(key=f"K{i:04d}", related_pages="hub") for i in range(2_000)]
        limits = SafeguardSettings(max_group_size=100, preemptive_skip_factor=50.0)

        result = GroupingEngine(clock=MockClock()).group(records, limits)

        assert not result.degraded
        assert [len(g) for g in result.groups] == [100] * 20
        # The last group holds exactly the remaining records, so no cap is hit
        assert all(g.truncated for g in result.groups[:-1])
        assert not result.groups[-1].truncated
        assert result.stats.size_cap_hits == 19
        _assert_partition(result, records)

    def test_iteration_cap_truncates_component(self) -> None:
        records = _page_records({"A": "v1", "B": "v1, v2", "C": "v2, v3", "D": "v3, v4", "E": "v4"})

        result = GroupingEngine(SafeguardSettings(max_iterations=3), clock=MockClock()).group(records)

        assert [g.keys for g in result.groups] == [("A", "B", "C"), ("D", "E")]
        assert result.groups[0].truncated
        assert result.stats.iteration_cap_hits == 1
        _assert_partition(result, records)

    def test_stack_trim_is_lossless_for_the_partition(self) -> None:
        records = [Record(key=f"K{i:02d}", related_pages="shared") for i in range(50)]
        limits = SafeguardSettings(max_stack_size=10, preemptive_skip_factor=100.0)

        result = GroupingEngine(clock=MockClock()).group(records, limits)

        assert result.stats.stack_trims > 0
        assert result.groups[0].truncated
        _assert_partition(result, records)

    def test_component_time_box(self) -> None:
        records = [Record(key=f"K{i}", related_pages="shared") for i in range(10)]
        limits = SafeguardSettings(max_component_seconds=2.0, max_total_seconds=10_000.0, time_check_interval=1)

        result = GroupingEngine(clock=TickingClock(step=1.0)).group(records, limits)

        assert not result.degraded
        assert result.stats.component_timeouts >= 1
        _assert_partition(result, records)


class TestFallback:
    """The global time box and internal errors degrade to singletons."""

    def test_total_time_box_falls_back_to_singletons(self) -> None:
        records = [Record(key=f"K{i}", related_pages=f"own-{i}") for i in range(20)]
        limits = SafeguardSettings(max_total_seconds=5.0)

        result = GroupingEngine(clock=TickingClock(step=1.0)).group(records, limits)

        assert result.degraded
        assert result.fallback_reason is not None and "time box" in result.fallback_reason
        assert [g.keys for g in result.groups] == [(r.key,) for r in records]
        assert result.stats.singleton_groups == 20

    def test_internal_error_falls_back_to_singletons(self) -> None:
        records = [Record(key="A", related_pages="x"), Record(key="A", related_pages="y")]

        result = GroupingEngine(clock=MockClock()).group(records)

        assert result.degraded
        assert result.fallback_reason is not None
        assert "internal error" in result.fallback_reason
        assert "ValueError" in result.fallback_reason
        assert len(result.groups) == 2
