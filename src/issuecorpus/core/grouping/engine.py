# src/issuecorpus/core/grouping/engine.py
"""GroupingEngine: bounded connected components over shared relation values.

The search is an explicit-stack traversal (never recursion) seeded by each
unvisited record in input order. Every resource bound is a named
SafeguardSettings field. Per-component bounds are lossy: they cut a group
short and leave the remaining keys unvisited, so those keys seed their own
groups later and the partition stays intact. The global time box and any
internal error degrade to one singleton group per record.
"""

from collections.abc import Sequence

from issuecorpus.contracts.grouping import GroupingResult, GroupingStats
from issuecorpus.contracts.records import Group, Record
from issuecorpus.core.clock import DEFAULT_CLOCK, Clock
from issuecorpus.core.config import RelationSettings, SafeguardSettings
from issuecorpus.core.grouping.relations import RelationGraph
from issuecorpus.core.logging import get_logger

logger = get_logger(__name__)


class _TotalTimeExceeded(Exception):
    """Internal signal: the whole grouping pass ran past max_total_seconds."""

    def __init__(self, elapsed: float, limit: float) -> None:
        self.elapsed = elapsed
        self.limit = limit
        super().__init__(f"Grouping exceeded {limit:.1f}s (elapsed {elapsed:.1f}s)")


class GroupingEngine:
    """Partitions records into groups of related records.

    Example:
        engine = GroupingEngine(settings.safeguards, settings.relations)
        result = engine.group(records)
        if result.degraded:
            logger.warning("Singleton fallback", reason=result.fallback_reason)
    """

    def __init__(
        self,
        safeguards: SafeguardSettings | None = None,
        relations: RelationSettings | None = None,
        *,
        clock: Clock = DEFAULT_CLOCK,
    ) -> None:
        self._safeguards = safeguards or SafeguardSettings()
        self._relations = relations or RelationSettings()
        self._clock = clock

    def group(self, records: Sequence[Record], limits: SafeguardSettings | None = None) -> GroupingResult:
        """Partition ``records`` into groups, largest first.

        Never raises: a timeout or internal error returns the singleton
        fallback with ``degraded=True``.

        Args:
            records: Records in input order
            limits: Safeguards for this call (default: the engine's)

        Returns:
            GroupingResult covering every input record exactly once
        """
        limits = limits or self._safeguards
        started = self._clock.monotonic()
        stats = GroupingStats(records=len(records))

        if not records:
            return GroupingResult(groups=(), stats=stats)

        try:
            graph = RelationGraph.build(records, self._relations)
            stats.unique_values = len(graph.values)
            stats.largest_value_fanout = graph.largest_value_fanout()
            groups = self._components(graph, limits, started, stats)
        except _TotalTimeExceeded as e:
            logger.warning(
                "Grouping time box exceeded, falling back to singleton groups",
                elapsed_seconds=round(e.elapsed, 3),
                max_total_seconds=e.limit,
                records=len(records),
            )
            return self._fallback(records, f"time box exceeded: {e}", stats, started)
        except Exception as e:
            logger.error(
                "Grouping failed, falling back to singleton groups",
                error=str(e),
                error_type=type(e).__name__,
                records=len(records),
            )
            return self._fallback(records, f"internal error: {type(e).__name__}: {e}", stats, started)

        # reverse=True keeps equal-sized groups in discovery order
        groups.sort(key=len, reverse=True)
        stats.components = len(groups)
        stats.singleton_groups = sum(1 for g in groups if len(g) == 1)
        stats.largest_group = len(groups[0]) if groups else 0
        stats.elapsed_seconds = self._clock.monotonic() - started

        logger.info("Grouping complete", **stats.to_dict())
        if stats.safeguard_triggers:
            logger.warning(
                "Grouping safeguards triggered",
                preemptive_skips=stats.preemptive_skips,
                iteration_cap_hits=stats.iteration_cap_hits,
                size_cap_hits=stats.size_cap_hits,
                stack_trims=stats.stack_trims,
                component_timeouts=stats.component_timeouts,
            )
        return GroupingResult(groups=tuple(groups), stats=stats)

    def _fallback(
        self,
        records: Sequence[Record],
        reason: str,
        stats: GroupingStats,
        started: float,
    ) -> GroupingResult:
        groups = tuple(Group(keys=(record.key,)) for record in records)
        stats.components = len(groups)
        stats.singleton_groups = len(groups)
        stats.largest_group = 1
        stats.elapsed_seconds = self._clock.monotonic() - started
        return GroupingResult(groups=groups, degraded=True, fallback_reason=reason, stats=stats)

    def _check_total(self, limits: SafeguardSettings, started: float) -> None:
        elapsed = self._clock.monotonic() - started
        if elapsed > limits.max_total_seconds:
            raise _TotalTimeExceeded(elapsed, limits.max_total_seconds)

    def _components(
        self,
        graph: RelationGraph,
        limits: SafeguardSettings,
        started: float,
        stats: GroupingStats,
    ) -> list[Group]:
        visited: set[str] = set()
        groups: list[Group] = []
        skip_threshold = limits.max_group_size * limits.preemptive_skip_factor

        for seed in graph.keys:
            if seed in visited:
                continue
            self._check_total(limits, started)

            fanout = graph.fanout(seed)
            if fanout > skip_threshold:
                logger.debug("Pre-emptive singleton for high fan-out record", record_key=seed, fanout=fanout)
                stats.preemptive_skips += 1
                visited.add(seed)
                groups.append(Group(keys=(seed,), truncated=True))
                continue

            groups.append(self._search(seed, graph, visited, limits, started, stats))
        return groups

    def _search(
        self,
        seed: str,
        graph: RelationGraph,
        visited: set[str],
        limits: SafeguardSettings,
        started: float,
        stats: GroupingStats,
    ) -> Group:
        """Collect the component reachable from ``seed`` within the bounds."""
        component: list[str] = []
        stack: list[str] = [seed]
        stacked: set[str] | None = {seed} if limits.cycle_detection else None
        component_started = self._clock.monotonic()
        iterations = 0
        truncated = False
        size_capped = False

        while stack:
            iterations += 1
            if iterations > limits.max_iterations:
                logger.warning("Component iteration cap reached", seed=seed, members=len(component))
                stats.iteration_cap_hits += 1
                truncated = True
                break

            if iterations % limits.time_check_interval == 0:
                self._check_total(limits, started)
                if self._clock.monotonic() - component_started > limits.max_component_seconds:
                    logger.warning("Component time box reached", seed=seed, members=len(component))
                    stats.component_timeouts += 1
                    truncated = True
                    break

            key = stack.pop()
            if stacked is not None:
                stacked.discard(key)
            if key in visited:
                stats.cycle_skips += 1
                continue

            visited.add(key)
            component.append(key)

            for value in graph.keys[key]:
                for neighbour in graph.values[value]:
                    if neighbour in visited or (stacked is not None and neighbour in stacked):
                        continue
                    if len(component) + len(stack) >= limits.max_group_size:
                        size_capped = True
                        break
                    stack.append(neighbour)
                    if stacked is not None:
                        stacked.add(neighbour)
                if size_capped and len(component) + len(stack) >= limits.max_group_size:
                    break

            if len(stack) > limits.max_stack_size:
                keep = limits.max_stack_size // 2
                dropped = stack[keep:]
                del stack[keep:]
                if stacked is not None:
                    stacked.difference_update(dropped)
                stats.stack_trims += 1
                truncated = True
                logger.debug("Component stack trimmed", seed=seed, dropped=len(dropped), kept=keep)

        if size_capped:
            stats.size_cap_hits += 1
            truncated = True
            logger.warning("Component size cap reached", seed=seed, members=len(component), max_group_size=limits.max_group_size)

        return Group(keys=tuple(component), truncated=truncated)
