import math
from hj.common.logger import log
from hj.core.intervals import insert_block
from hj.core.model import ActiveTimer, TimeBlock, generate_id, local_timestamp_ms, timer_precedes
from hj.core.slots import format_hhmm, parse_hhmm

# A timer started within this many minutes of a block ending picks that block back up instead of leaving a gap.
GRACE_MINUTES = 15
# Stopped timers are stored in whole quanta, rounded up, never less than one.
QUANTUM_MINUTES = 15

#region === Pure helpers ===

def elapsed_seconds(timer, now_ms):
    return max(0, (now_ms - timer.start_timestamp) // 1000)

def rounded_duration(seconds, quantum=QUANTUM_MINUTES):
    return max(quantum, math.ceil(seconds / 60 / quantum) * quantum)

# Collapses timers to one per habit, keeping the earliest-started one. Habit order of first appearance is kept.
def dedupe_timers(timers):
    by_habit = {}
    for timer in timers:
        existing = by_habit.get(timer.habit_id)
        if existing is None or timer_precedes(timer, existing):
            by_habit[timer.habit_id] = timer
    if len(by_habit) != len(timers):
        log.debug(f"Discarded {len(timers) - len(by_habit)} duplicate active timer(s)")
    return list(by_habit.values())

# Timers whose habit was deleted while they ran are dropped quietly.
def drop_orphan_timers(timers, habit_ids):
    kept = [t for t in timers if t.habit_id in habit_ids]
    for timer in timers:
        if timer.habit_id not in habit_ids:
            log.info(f"Discarding timer '{timer.id}' for missing habit '{timer.habit_id}'")
    return kept

# Elapsed seconds per running timer, for display only.
def elapsed_readout(timers, now_ms):
    return {timer.id: elapsed_seconds(timer, now_ms) for timer in timers}

#endregion === Pure helpers ===

# Start/stop/resume transitions for the running timers of one dataset. The manager works directly on the dataset's
# `active_timers` and `time_blocks` lists; callers validate input and persist afterwards.
class TimerManager:

    def __init__(self, dataset, grace_minutes=GRACE_MINUTES, quantum_minutes=QUANTUM_MINUTES):
        self.dataset = dataset
        self.grace_minutes = grace_minutes
        self.quantum_minutes = quantum_minutes

    def timer_for(self, habit_id):
        return next((t for t in self.dataset.active_timers if t.habit_id == habit_id), None)

    def find(self, timer_id):
        return next((t for t in self.dataset.active_timers if t.id == timer_id), None)

    # Starts (or keeps) the timer for `habit_id`.
    #
    # An already-running timer that started no later than this request wins and is returned untouched. Otherwise
    # the request runs a resume check: every block of the same habit/day whose end is no earlier than the requested
    # start minus the grace window is folded into the timer, whose start moves back to the earliest of them. The
    # furthest absorbed end is kept on the timer as `absorbed_until` so stopping early gives none of that time back.
    def start(self, habit_id, day, start_time, now_ms, start_timestamp=None):
        timestamp = now_ms if start_timestamp is None else start_timestamp
        existing = self.timer_for(habit_id)
        if existing is not None and not timestamp < existing.start_timestamp:
            log.debug(f"Timer for habit '{habit_id}' already running since {existing.start_time}, keeping it")
            return existing

        requested = parse_hhmm(start_time)
        effective = requested
        absorbed_until = existing.absorbed_until if existing is not None else None
        absorbed = [
            b for b in self.dataset.time_blocks
            if b.habit_id == habit_id and b.date == day
            and b.end_minutes >= requested - self.grace_minutes
        ]
        if absorbed:
            earliest = min(b.start_minutes for b in absorbed)
            if earliest < effective:
                effective = earliest
                timestamp = min(timestamp, local_timestamp_ms(day, earliest))
            latest = max(b.end_minutes for b in absorbed)
            if latest > requested:
                absorbed_until = max(latest, absorbed_until or 0)
            absorbed_ids = {b.id for b in absorbed}
            self.dataset.time_blocks = [b for b in self.dataset.time_blocks if b.id not in absorbed_ids]
            log.debug(f"Timer for habit '{habit_id}' resumed {len(absorbed)} block(s), starting {format_hhmm(effective)}")

        timer = ActiveTimer(
            id=existing.id if existing is not None else generate_id(),
            habit_id=habit_id,
            date=day,
            start_time=format_hhmm(effective),
            start_timestamp=timestamp,
            absorbed_until=absorbed_until,
        )
        if existing is not None:
            self.dataset.active_timers = [timer if t.habit_id == habit_id else t for t in self.dataset.active_timers]
            log.info(f"Replaced timer for habit '{habit_id}' with an earlier start at {timer.start_time}")
        else:
            self.dataset.active_timers = self.dataset.active_timers + [timer]
            log.info(f"Started timer '{timer.id}' for habit '{habit_id}' at {timer.start_time} on {day}")
        return timer

    # Stops a timer and stores its run as a block, rounded up to the quantum. Returns the stored block (possibly
    # widened by neighbours it touched), or None when the timer is unknown or its habit is gone.
    def stop(self, timer_id, now_ms):
        timer = self.find(timer_id)
        if timer is None:
            return None
        self.dataset.active_timers = [t for t in self.dataset.active_timers if t.id != timer_id]
        if timer.habit_id not in self.dataset.habit_ids():
            log.info(f"Discarded timer '{timer_id}' on stop, habit '{timer.habit_id}' no longer exists")
            return None

        seconds = elapsed_seconds(timer, now_ms)
        duration = rounded_duration(seconds, self.quantum_minutes)
        if timer.absorbed_until is not None:
            duration = max(duration, timer.absorbed_until - parse_hhmm(timer.start_time))
        block = TimeBlock(
            id=generate_id(),
            habit_id=timer.habit_id,
            date=timer.date,
            start_time=timer.start_time,
            duration=duration,
        )
        self.dataset.time_blocks, stored = insert_block(self.dataset.time_blocks, block)
        log.info(f"Stopped timer '{timer_id}' after {seconds}s, stored {stored.start_time} for {stored.duration} min")
        return stored

    # "Keep running": turns a stored block back into a live timer from the block's start.
    def resume_block(self, block_id, now_ms):
        block = next((b for b in self.dataset.time_blocks if b.id == block_id), None)
        if block is None:
            return None
        started = min(now_ms, local_timestamp_ms(block.date, block.start_minutes))
        return self.start(block.habit_id, block.date, block.start_time, now_ms, start_timestamp=started)
