"""Keeps each habit's time-blocks on a day free of overlaps.

Two entry points share one sweep but differ in which id survives a merge:

- ``merge_blocks`` (bulk) keeps the id of the earliest-starting block.  It is
  run on load and after reconciliation; it is idempotent and does not depend
  on input order.
- ``insert_block`` (incremental) keeps the id of the block being inserted, so
  a user dropping a block onto an occupied stretch sees their new block
  absorb the neighbours.

Blocks that merely touch (one ends exactly where the next starts) are merged
as well.
"""

from dataclasses import replace
from hj.common.logger import log
from hj.core.slots import format_hhmm


def _sweep_key(block):
    return block.start_minutes, block.id


# True when two blocks of the same habit/day share or touch a boundary.
def overlaps_or_touches(a, b):
    return a.start_minutes <= b.end_minutes and b.start_minutes <= a.end_minutes


def _span(block, start, end):
    return replace(block, start_time=format_hhmm(start), duration=end - start)


def _merge_group(blocks):
    ordered = sorted(blocks, key=_sweep_key)
    merged = []
    current = ordered[0]
    current_start, current_end = current.start_minutes, current.end_minutes
    for nxt in ordered[1:]:
        if current_end >= nxt.start_minutes:
            current_end = max(current_end, nxt.end_minutes)
            continue
        merged.append(_span(current, current_start, current_end))
        current = nxt
        current_start, current_end = nxt.start_minutes, nxt.end_minutes
    merged.append(_span(current, current_start, current_end))
    return merged


def merge_blocks(blocks):
    """Bulk-normalize any list of blocks.

    Groups by ``(habit_id, date)`` in first-seen order, sweeps each group by
    start time and returns the minimal non-overlapping set.  Groups that are
    already clean come back unchanged, so a second pass is a no-op.
    """
    groups = {}
    for block in blocks:
        groups.setdefault(block.group_key, []).append(block)

    result = []
    absorbed = 0
    for key, group in groups.items():
        if len(group) == 1:
            result.extend(group)
            continue
        merged = _merge_group(group)
        absorbed += len(group) - len(merged)
        result.extend(merged)

    if absorbed:
        log.debug(f"Bulk merge absorbed {absorbed} overlapping block(s) across {len(groups)} habit/day group(s)")
    return result


def insert_block(blocks, new_block):
    """Insert ``new_block`` and fold in every same habit/day block it overlaps or touches.

    Returns ``(blocks, stored)`` where ``stored`` is the block actually kept:
    ``new_block`` itself, or a widened copy carrying ``new_block.id``.  Blocks
    of other habits or days are never looked at.
    """
    absorbed = []
    kept = []
    for block in blocks:
        if block.group_key == new_block.group_key and overlaps_or_touches(block, new_block):
            absorbed.append(block)
        else:
            kept.append(block)

    if not absorbed:
        return kept + [new_block], new_block

    start = min([new_block.start_minutes] + [b.start_minutes for b in absorbed])
    end = max([new_block.end_minutes] + [b.end_minutes for b in absorbed])
    stored = _span(new_block, start, end)
    log.debug(f"Inserted block '{new_block.id}' absorbed {len(absorbed)} neighbour(s), "
              f"now {stored.start_time} for {stored.duration} min")
    return kept + [stored], stored


# Every block of one habit on one logical day, in start order.
def blocks_for(blocks, habit_id, day):
    return sorted((b for b in blocks if b.habit_id == habit_id and b.date == day), key=_sweep_key)
