# tests/property/test_grouping_properties.py
"""Property-based tests for GroupingEngine.

Key Invariants:
- Every input record appears in exactly one group, whatever the limits
- No group exceeds max_group_size
- Groups are ordered largest first
- With generous limits, groups are exactly the connected components of
  the shared-value graph
"""

from collections import Counter

from hypothesis import given
from hypothesis import strategies as st

from issuecorpus.contracts import Record
from issuecorpus.core.clock import MockClock
from issuecorpus.core.config import SafeguardSettings
from issuecorpus.core.grouping import GroupingEngine

value_tokens = st.sampled_from([f"v{i}" for i in range(12)])

record_links = st.lists(st.lists(value_tokens, max_size=3), max_size=40)

limits_strategy = st.builds(
    SafeguardSettings,
    max_iterations=st.integers(min_value=1, max_value=60),
    max_group_size=st.integers(min_value=1, max_value=30),
    max_stack_size=st.integers(min_value=2, max_value=20),
    cycle_detection=st.booleans(),
    preemptive_skip_factor=st.floats(min_value=0.5, max_value=10.0),
)


def _records(links: list[list[str]]) -> list[Record]:
    return [Record(key=f"R{i:03d}", related_pages=", ".join(values) or None) for i, values in enumerate(links)]


def _components(links: list[list[str]]) -> set[frozenset[str]]:
    """Reference connected components via union-find."""
    parent: dict[str, str] = {}

    def find(x: str) -> str:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    owner: dict[str, str] = {}
    for i, values in enumerate(links):
        key = f"R{i:03d}"
        parent[key] = key
        for value in values:
            if value in owner:
                parent[find(key)] = find(owner[value])
            else:
                owner[value] = key

    members: dict[str, set[str]] = {}
    for key in parent:
        members.setdefault(find(key), set()).add(key)
    return {frozenset(m) for m in members.values()}


class TestGroupingInvariants:
    @given(links=record_links, limits=limits_strategy)
    def test_partition_and_bounds_hold_under_any_limits(self, links: list[list[str]], limits: SafeguardSettings) -> None:
        records = _records(links)

        result = GroupingEngine(clock=MockClock()).group(records, limits)

        counts = Counter(key for group in result.groups for key in group.keys)
        assert set(counts) == {r.key for r in records}
        assert all(n == 1 for n in counts.values())
        assert all(len(g) <= limits.max_group_size for g in result.groups)
        sizes = [len(g) for g in result.groups]
        assert sizes == sorted(sizes, reverse=True)
        assert not result.degraded

    @given(links=record_links)
    def test_generous_limits_yield_connected_components(self, links: list[list[str]]) -> None:
        result = GroupingEngine(clock=MockClock()).group(_records(links))

        assert {frozenset(g.keys) for g in result.groups} == _components(links)
        assert not any(g.truncated for g in result.groups)

    @given(links=record_links)
    def test_grouping_is_deterministic(self, links: list[list[str]]) -> None:
        engine = GroupingEngine(clock=MockClock())

        assert engine.group(_records(links)).groups == engine.group(_records(links)).groups
