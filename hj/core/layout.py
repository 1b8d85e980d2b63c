"""Placement of time-blocks and running timers on the day grid.

Each block is cut into one ``Segment`` per grid column it crosses, keyed
``"<id>:<col>"``.  ``layout_day`` then gives every segment a track and a
track count so overlapping blocks of different habits sit side by side;
``segment_geometry`` turns that into a horizontal offset and width for
whatever draws the grid.
"""

import math
from dataclasses import dataclass
from hj.core.slots import COLUMNS, ROWS, SLOT_MINUTES, column_segments, time_to_slot, to_ordinal, parse_hhmm


@dataclass
class Segment:
    """One column's worth of a block or running timer."""
    item: object
    col: int
    start_row: int
    row_span: int
    track: int = 0
    track_count: int = 1

    @property
    def key(self):
        return f"{self.item.id}:{self.col}"

    @property
    def rows(self):
        return range(self.start_row, self.start_row + self.row_span)

    @property
    def slots(self):
        return [(self.col, row) for row in self.rows]


def split_block(block):
    return [Segment(block, col, start_row, span) for col, start_row, span in column_segments(block.start_time, block.duration)]


def _order_key(segment):
    return parse_hhmm(segment.item.start_time), segment.item.id


def layout_day(blocks):
    """Assign every segment of the day a track and a track count.

    ``track_count`` is the busiest slot a segment covers.  Tracks are handed
    out greedily, column by column and top to bottom: at each slot the
    not-yet-placed segments (earliest start first) take the lowest track no
    other segment in that slot holds.  A segment keeps its track for its
    whole span, so adding a block never moves existing ones, and since a
    segment is placed at its own first row ``track < track_count`` holds.
    """
    segments = [segment for block in blocks for segment in split_block(block)]
    by_key = {segment.key: segment for segment in segments}

    slot_index = {}
    for segment in segments:
        for slot in segment.slots:
            slot_index.setdefault(slot, []).append(segment.key)

    for segment in segments:
        segment.track_count = max((len(slot_index[slot]) for slot in segment.slots), default=1)

    assigned = {}
    for col in range(COLUMNS):
        for row in range(ROWS):
            keys = slot_index.get((col, row))
            if not keys:
                continue
            ordered = sorted(keys, key=lambda k: _order_key(by_key[k]))
            used = {assigned[k] for k in ordered if k in assigned}
            for key in ordered:
                if key in assigned:
                    continue
                track = 0
                while track in used:
                    track += 1
                assigned[key] = track
                used.add(track)

    for segment in segments:
        segment.track = assigned.get(segment.key, 0)
    segments.sort(key=lambda s: (s.col, s.start_row, s.track))
    return segments


def segment_geometry(segment, available_width):
    """Return ``(x, width)`` of ``segment`` within ``available_width``."""
    width = available_width / segment.track_count
    return segment.track * width, width


def timer_segments(timers, now_ms, now_time):
    """Lay out running timers as growing blocks from their start slot to the slot holding ``now_time``.

    ``now_time`` is the viewer's local ``(hour, minute)``; callers only show
    this for the day being timed.  A timer always covers at least its
    starting slot.
    """
    current = time_to_slot(*now_time)
    if current is None:
        return []
    current_abs = to_ordinal(*current)

    segments = []
    for timer in timers:
        h, m = divmod(parse_hhmm(timer.start_time), 60)
        start = time_to_slot(h, m)
        if start is None:
            continue
        elapsed_minutes = max(0, now_ms - timer.start_timestamp) // 60000
        elapsed_slots = max(1, math.ceil(elapsed_minutes / SLOT_MINUTES))
        start_abs = to_ordinal(*start)
        end_abs = max(start_abs + 1, min(start_abs + elapsed_slots, current_abs + 1))
        duration = (end_abs - start_abs) * SLOT_MINUTES
        segments.extend(Segment(timer, col, row, span) for col, row, span in column_segments(timer.start_time, duration))
    return segments
