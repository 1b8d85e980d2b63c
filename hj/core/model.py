import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from hj.common.logger import log
from hj.core.slots import format_hhmm, parse_hhmm

UNGROUPED_GROUP_ID = "ungrouped"

# Wire keys for each collection of the aggregate. Time-blocks are stored under the web app's `timedEntries` key so existing
# habits.json backups stay readable.
_COLLECTION_KEYS = ("habits", "groups", "completions", "timedEntries", "activeTimers")
_KEY_ALIASES = {"timedEntries": ("timeBlocks",)}

#region === Helpers ===

def generate_id():
    return uuid.uuid4().hex[:12]

# Epoch milliseconds, the unit every startTimestamp is stored in.
def now_ms():
    return int(time.time() * 1000)

# Simply returns the current local time as an ISO8601 string with timezone offset.
def now_iso():
    return datetime.now().astimezone().isoformat()

def check_date(text):
    try:
        date.fromisoformat(text)
    except (TypeError, ValueError):
        raise ValueError(f"Expected YYYY-MM-DD, got {text!r}") from None
    return text

# Local wall-clock instant for minute-of-day `minutes` on logical day `day`, as epoch ms. Minutes past midnight roll
# into the next calendar day.
def local_timestamp_ms(day, minutes):
    base = datetime.combine(date.fromisoformat(day), datetime.min.time())
    return int((base + timedelta(minutes=minutes)).astimezone().timestamp() * 1000)

def _optional_minutes(raw, key):
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError(f"'{key}' must be a non-negative number of minutes")
    return int(value)

def _require_str(raw, key):
    value = raw[key]
    if not isinstance(value, str) or not value:
        raise ValueError(f"'{key}' must be a non-empty string")
    return value

#endregion === Helpers ===

#region === Entities ===

@dataclass(frozen=True)
class HabitGroup:
    id: str
    name: str
    visible: bool = True

    def to_dict(self):
        return {"id": self.id, "name": self.name, "visible": self.visible}

    @classmethod
    def from_dict(cls, raw):
        return cls(id=_require_str(raw, "id"), name=str(raw.get("name", "")), visible=bool(raw.get("visible", True)))


@dataclass(frozen=True)
class Habit:
    id: str
    name: str
    group_id: str = UNGROUPED_GROUP_ID
    created_at: str = ""
    emoji: str | None = None
    color: str | None = None

    def to_dict(self):
        d = {"id": self.id, "name": self.name, "groupId": self.group_id, "createdAt": self.created_at}
        if self.emoji is not None:
            d["emoji"] = self.emoji
        if self.color is not None:
            d["color"] = self.color
        return d

    # Habits written before groups existed have no groupId; they belong to the ungrouped group.
    @classmethod
    def from_dict(cls, raw):
        return cls(
            id=_require_str(raw, "id"),
            name=str(raw.get("name", "")),
            group_id=raw.get("groupId") or UNGROUPED_GROUP_ID,
            created_at=str(raw.get("createdAt", "")),
            emoji=raw.get("emoji"),
            color=raw.get("color"),
        )


@dataclass(frozen=True)
class Completion:
    habit_id: str
    date: str
    value: float = 1

    @property
    def key(self):
        return self.habit_id, self.date

    def to_dict(self):
        return {"habitId": self.habit_id, "date": self.date, "value": self.value}

    @classmethod
    def from_dict(cls, raw):
        value = raw.get("value", 1)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("'value' must be a number")
        return cls(habit_id=_require_str(raw, "habitId"), date=check_date(raw["date"]), value=value)


@dataclass(frozen=True)
class TimeBlock:
    """A stored interval of activity for one habit on one logical day.

    ``date`` is the day the block belongs to even when ``start_time`` plus
    ``duration`` runs past midnight, so ``end_minutes`` may exceed 1440.
    """
    id: str
    habit_id: str
    date: str
    start_time: str
    duration: int

    @property
    def start_minutes(self):
        return parse_hhmm(self.start_time)

    @property
    def end_minutes(self):
        return self.start_minutes + self.duration

    @property
    def group_key(self):
        return self.habit_id, self.date

    def to_dict(self):
        return {
            "id": self.id,
            "habitId": self.habit_id,
            "date": self.date,
            "startTime": self.start_time,
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, raw):
        duration = raw["duration"]
        if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration <= 0:
            raise ValueError(f"'duration' must be a positive number of minutes, got {duration!r}")
        start_time = format_hhmm(parse_hhmm(raw["startTime"]))
        return cls(
            id=_require_str(raw, "id"),
            habit_id=_require_str(raw, "habitId"),
            date=check_date(raw["date"]),
            start_time=start_time,
            duration=int(duration),
        )


@dataclass(frozen=True)
class ActiveTimer:
    id: str
    habit_id: str
    date: str
    start_time: str
    start_timestamp: int
    # Minute-of-day end of the latest block folded in on start, when it lies past the start. A stop never stores less.
    absorbed_until: int | None = None

    def to_dict(self):
        d = {
            "id": self.id,
            "habitId": self.habit_id,
            "date": self.date,
            "startTime": self.start_time,
            "startTimestamp": self.start_timestamp,
        }
        if self.absorbed_until is not None:
            d["absorbedUntil"] = self.absorbed_until
        return d

    @classmethod
    def from_dict(cls, raw):
        ts = raw["startTimestamp"]
        if isinstance(ts, bool) or not isinstance(ts, (int, float)):
            raise ValueError("'startTimestamp' must be epoch milliseconds")
        start_time = format_hhmm(parse_hhmm(raw["startTime"]))
        return cls(
            id=_require_str(raw, "id"),
            habit_id=_require_str(raw, "habitId"),
            date=check_date(raw["date"]),
            start_time=start_time,
            start_timestamp=int(ts),
            absorbed_until=_optional_minutes(raw, "absorbedUntil"),
        )

# Earliest startTimestamp wins; the id breaks exact ties so the choice never depends on which copy was seen first.
def timer_precedes(a, b):
    return (a.start_timestamp, a.id) < (b.start_timestamp, b.id)

#endregion === Entities ===

#region === Aggregate ===

_ENTITY_TYPES = {
    "habits": Habit,
    "groups": HabitGroup,
    "completions": Completion,
    "timedEntries": TimeBlock,
    "activeTimers": ActiveTimer,
}

@dataclass
class Dataset:
    """The full aggregate: the unit saved locally and exchanged with the remote store."""
    habits: list = field(default_factory=list)
    groups: list = field(default_factory=list)
    completions: list = field(default_factory=list)
    time_blocks: list = field(default_factory=list)
    active_timers: list = field(default_factory=list)

    def collections(self):
        return {
            "habits": self.habits,
            "groups": self.groups,
            "completions": self.completions,
            "timedEntries": self.time_blocks,
            "activeTimers": self.active_timers,
        }

    def to_dict(self):
        return {key: [item.to_dict() for item in items] for key, items in self.collections().items()}

    def copy(self):
        return replace(
            self,
            habits=list(self.habits),
            groups=list(self.groups),
            completions=list(self.completions),
            time_blocks=list(self.time_blocks),
            active_timers=list(self.active_timers),
        )

    def habit_ids(self):
        return {h.id for h in self.habits}

    # The built-in ungrouped group alone doesn't count as data.
    def is_empty(self):
        return not (
            self.habits or self.completions or self.time_blocks or self.active_timers
            or any(g.id != UNGROUPED_GROUP_ID for g in self.groups)
        )

    # The deserialization boundary. Missing or ill-typed collections become empty lists and malformed records are
    # skipped, both logged, so nothing past this point needs to guard against older or hand-edited data.
    @classmethod
    def from_dict(cls, raw, source="dataset"):
        if not isinstance(raw, dict):
            log.warning(f"{source}: expected a JSON object, got {type(raw).__name__}; using an empty dataset")
            return cls()

        defaulted = set()
        skipped = 0
        parsed = {}
        for key in _COLLECTION_KEYS:
            items = raw.get(key)
            if items is None:
                for alias in _KEY_ALIASES.get(key, ()):
                    items = raw.get(alias)
                    if items is not None:
                        break
            if not isinstance(items, list):
                defaulted.add(key)
                items = []

            entity_type = _ENTITY_TYPES[key]
            records = []
            for item in items:
                try:
                    records.append(entity_type.from_dict(item))
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    skipped += 1
                    log.warning(f"{source}: skipping malformed {key} record {item!r}: {e}")
            parsed[key] = records

        if defaulted:
            log.warning(f"{source}: missing collections defaulted to empty: {', '.join(sorted(defaulted))}")
        if skipped:
            log.warning(f"{source}: skipped {skipped} malformed record(s)")

        return cls(
            habits=parsed["habits"],
            groups=parsed["groups"],
            completions=parsed["completions"],
            time_blocks=parsed["timedEntries"],
            active_timers=parsed["activeTimers"],
        )

#endregion === Aggregate ===
