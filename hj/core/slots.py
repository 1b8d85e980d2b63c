"""Day-grid coordinate system.

The visible day is laid out as ``COLUMNS`` columns of ``HOURS_PER_COLUMN``
hours each, every column split into 15 minute rows.  A cell is addressed
either by ``(col, row)`` or by a single ordinal ``col * ROWS + row`` so that
drag selections crossing a column boundary are plain integer ranges.

Everything here is pure.  Times are wall-clock ``HH:MM`` strings or minutes
from midnight; no timezone handling happens at this level.
"""

import math

START_HOUR = 0
HOURS_PER_COLUMN = 8
COLUMNS = 3
SLOT_MINUTES = 15
SLOTS_PER_HOUR = 60 // SLOT_MINUTES
ROWS = HOURS_PER_COLUMN * SLOTS_PER_HOUR        # 32
TOTAL_SLOTS = COLUMNS * ROWS                    # 96
MINUTES_PER_DAY = 24 * 60


def _check_slot(col, row):
    if not (0 <= col < COLUMNS) or not (0 <= row < ROWS):
        raise ValueError(f"Slot ({col}, {row}) is outside the {COLUMNS}x{ROWS} day grid")


def slot_to_time(col, row):
    """Return the ``(hour, minute)`` a grid cell starts at."""
    _check_slot(col, row)
    hour = (START_HOUR + col * HOURS_PER_COLUMN + row // SLOTS_PER_HOUR) % 24
    minute = (row % SLOTS_PER_HOUR) * SLOT_MINUTES
    return hour, minute


def time_to_slot(hour, minute):
    """Return the ``(col, row)`` cell containing a wall-clock time, or None.

    Minutes inside a slot floor to that slot, so 09:07 lands on the 09:00 row.
    """
    if not (0 <= hour < 24) or not (0 <= minute < 60):
        raise ValueError(f"{hour:02d}:{minute:02d} is not a valid wall-clock time")
    hours_from_start = (hour - START_HOUR) % 24
    col = hours_from_start // HOURS_PER_COLUMN
    row = (hours_from_start % HOURS_PER_COLUMN) * SLOTS_PER_HOUR + minute // SLOT_MINUTES
    if col >= COLUMNS or row >= ROWS:
        return None
    return col, row


def to_ordinal(col, row):
    _check_slot(col, row)
    return col * ROWS + row


def from_ordinal(ordinal):
    if not (0 <= ordinal < TOTAL_SLOTS):
        raise ValueError(f"Ordinal {ordinal} is outside 0..{TOTAL_SLOTS - 1}")
    return divmod(ordinal, ROWS)


# Minutes covered by an inclusive ordinal span, in either drag direction.
def span_minutes(a, b):
    return (abs(b - a) + 1) * SLOT_MINUTES


def selection_to_entry(start_slot, end_slot):
    """Turn a drag selection between two ``(col, row)`` cells into ``(start_time, duration)``.

    The user may drag upward or backward across columns, so the earlier cell
    always becomes the start.
    """
    a = to_ordinal(*start_slot)
    b = to_ordinal(*end_slot)
    hour, minute = slot_to_time(*from_ordinal(min(a, b)))
    return format_hhmm(hour * 60 + minute), span_minutes(a, b)


# Splits a block into one (col, start_row, row_span) piece per column it touches. Partial trailing slots count as a
# full row, anything past the last column is clipped.
def column_segments(start_time, duration):
    h, m = divmod(parse_hhmm(start_time), 60)
    start = time_to_slot(h, m)
    if start is None or duration <= 0:
        return []
    start_abs = to_ordinal(*start)
    end_abs = start_abs + math.ceil(duration / SLOT_MINUTES)

    pieces = []
    for col in range(start[0], COLUMNS):
        col_start = col * ROWS
        col_end = col_start + ROWS
        if start_abs >= col_end or end_abs <= col_start:
            continue
        row_start = start[1] if col == start[0] else 0
        row_end = min(ROWS, end_abs - col_start)
        if row_end > row_start:
            pieces.append((col, row_start, row_end - row_start))
    return pieces


#region === Wall-clock string helpers ===

def parse_hhmm(text):
    """``"09:30"`` -> 570.  Raises ValueError on anything that isn't a valid 24h time."""
    try:
        hh, mm = text.split(":")
        hour, minute = int(hh), int(mm)
    except (AttributeError, ValueError):
        raise ValueError(f"Expected HH:MM, got {text!r}") from None
    if not (0 <= hour < 24) or not (0 <= minute < 60):
        raise ValueError(f"Expected HH:MM, got {text!r}")
    return hour * 60 + minute


# Wraps at midnight, so a block ending at 25:10 formats as 01:10.
def format_hhmm(minutes):
    minutes = int(minutes) % MINUTES_PER_DAY
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def format_elapsed(seconds):
    """Format elapsed seconds as HH:MM:SS. Negative values clamp to zero."""
    seconds = max(0, int(seconds))
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"


def format_duration(minutes):
    if minutes < 60:
        return f"{minutes} min"
    hours, mins = divmod(minutes, 60)
    label = f"{hours} hr{'s' if hours > 1 else ''}"
    if mins == 0:
        return label
    return f"{label} {mins} min"

#endregion === Wall-clock string helpers ===
