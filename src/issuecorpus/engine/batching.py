# src/issuecorpus/engine/batching.py
"""Packing of groups into size-bounded, group-preserving batches."""

from collections.abc import Iterable, Iterator, Mapping

from issuecorpus.contracts.records import Batch, Group, Record


def pack_batches(
    groups: Iterable[Group],
    records_by_key: Mapping[str, Record],
    target_size: int,
) -> Iterator[Batch]:
    """Yield batches of at most ``target_size`` records.

    Whole groups are appended to the current batch until the next group
    would overflow it; the current batch is then emitted. A group larger
    than ``target_size`` is emitted alone as consecutive slices, in order.
    Batch indexes start at 1 and are contiguous.

    Args:
        groups: Groups in processing order (largest first)
        records_by_key: Record lookup for group keys
        target_size: Maximum records per batch

    Yields:
        Batch objects in order
    """
    if target_size <= 0:
        raise ValueError(f"target_size must be positive, got {target_size}")

    index = 0
    current: list[Record] = []
    current_groups = 0

    for group in groups:
        members = [records_by_key[key] for key in group.keys]
        if not members:
            continue

        if current and len(current) + len(members) > target_size:
            index += 1
            yield Batch(index=index, records=tuple(current), group_count=current_groups)
            current, current_groups = [], 0

        if len(members) > target_size:
            for start in range(0, len(members), target_size):
                index += 1
                yield Batch(
                    index=index,
                    records=tuple(members[start : start + target_size]),
                    group_count=1,
                    split_group=True,
                )
            continue

        current.extend(members)
        current_groups += 1

    if current:
        index += 1
        yield Batch(index=index, records=tuple(current), group_count=current_groups)
