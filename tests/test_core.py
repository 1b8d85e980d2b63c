"""Tests for the pure journal core.

Covers: hj.core.slots, hj.core.intervals, hj.core.layout, hj.core.timer_state, hj.core.reconcile
"""

import os
import random
import tempfile
import unittest

os.environ.setdefault("HJ_DATA_DIR", tempfile.mkdtemp(prefix="hj-tests-"))

DAY = "2026-03-02"


def _block(block_id, start_time, duration, habit_id="habitA", day=DAY):
    from hj.core.model import TimeBlock
    return TimeBlock(id=block_id, habit_id=habit_id, date=day, start_time=start_time, duration=duration)

def _timer(timer_id, habit_id, start_timestamp, start_time="09:00", day=DAY):
    from hj.core.model import ActiveTimer
    return ActiveTimer(id=timer_id, habit_id=habit_id, date=day, start_time=start_time, start_timestamp=start_timestamp)

def _dataset(habit_ids=("habitA",), blocks=(), timers=()):
    from hj.core.model import Dataset, Habit
    from hj.core.normalize import normalize_dataset
    return normalize_dataset(Dataset(
        habits=[Habit(id=h, name=h) for h in habit_ids],
        time_blocks=list(blocks),
        active_timers=list(timers),
    ))


# ──────────────────────────────────────────────────────────────────────────
# slots.py tests
# ──────────────────────────────────────────────────────────────────────────

class TestSlots(unittest.TestCase):

    def test_every_slot_round_trips(self):
        """time_to_slot(slot_to_time(c, r)) == (c, r) across the whole grid."""
        from hj.core.slots import COLUMNS, ROWS, slot_to_time, time_to_slot
        for col in range(COLUMNS):
            for row in range(ROWS):
                self.assertEqual(time_to_slot(*slot_to_time(col, row)), (col, row))

    def test_slot_times(self):
        from hj.core.slots import slot_to_time
        self.assertEqual(slot_to_time(0, 0), (0, 0))
        self.assertEqual(slot_to_time(1, 4), (9, 0))
        self.assertEqual(slot_to_time(2, 31), (23, 45))

    def test_minutes_floor_to_their_slot(self):
        from hj.core.slots import time_to_slot
        self.assertEqual(time_to_slot(9, 7), (1, 4))
        self.assertEqual(time_to_slot(9, 14), (1, 4))
        self.assertEqual(time_to_slot(9, 15), (1, 5))

    def test_out_of_range_inputs_raise(self):
        from hj.core.slots import from_ordinal, slot_to_time, time_to_slot
        with self.assertRaises(ValueError):
            slot_to_time(3, 0)
        with self.assertRaises(ValueError):
            slot_to_time(0, 32)
        with self.assertRaises(ValueError):
            time_to_slot(24, 0)
        with self.assertRaises(ValueError):
            from_ordinal(96)

    def test_selection_of_four_slots_is_an_hour(self):
        """Ordinals 10..13 inclusive cover 60 minutes, whichever way the drag went."""
        from hj.core.slots import from_ordinal, selection_to_entry, span_minutes
        self.assertEqual(span_minutes(10, 13), 60)
        self.assertEqual(span_minutes(13, 10), 60)
        self.assertEqual(selection_to_entry(from_ordinal(10), from_ordinal(13)), ("02:30", 60))
        self.assertEqual(selection_to_entry(from_ordinal(13), from_ordinal(10)), ("02:30", 60))

    def test_selection_across_columns(self):
        from hj.core.slots import selection_to_entry
        self.assertEqual(selection_to_entry((0, 30), (1, 1)), ("07:30", 60))

    def test_column_segments_split_at_column_boundary(self):
        from hj.core.slots import column_segments
        self.assertEqual(column_segments("07:30", 60), [(0, 30, 2), (1, 0, 2)])
        self.assertEqual(column_segments("09:00", 20), [(1, 4, 2)])

    def test_column_segments_clip_past_midnight(self):
        from hj.core.slots import column_segments
        self.assertEqual(column_segments("23:30", 90), [(2, 30, 2)])

    def test_hhmm_helpers(self):
        from hj.core.slots import format_duration, format_elapsed, format_hhmm, parse_hhmm
        self.assertEqual(parse_hhmm("09:30"), 570)
        self.assertEqual(format_hhmm(570), "09:30")
        self.assertEqual(format_hhmm(1510), "01:10")
        for bad in ("9", "25:00", "10:60", None, "ab:cd"):
            with self.assertRaises(ValueError):
                parse_hhmm(bad)
        self.assertEqual(format_elapsed(3725), "01:02:05")
        self.assertEqual(format_elapsed(-4), "00:00:00")
        self.assertEqual(format_duration(45), "45 min")
        self.assertEqual(format_duration(60), "1 hr")
        self.assertEqual(format_duration(150), "2 hrs 30 min")


# ──────────────────────────────────────────────────────────────────────────
# intervals.py tests
# ──────────────────────────────────────────────────────────────────────────

class TestIntervals(unittest.TestCase):

    def _assert_no_overlap(self, blocks):
        groups = {}
        for b in blocks:
            groups.setdefault(b.group_key, []).append(b)
        for group in groups.values():
            group.sort(key=lambda b: b.start_minutes)
            for prev, nxt in zip(group, group[1:]):
                self.assertLess(prev.end_minutes, nxt.start_minutes)

    def test_overlapping_blocks_merge(self):
        """09:00+30 and 09:25+30 become 09:00-09:55."""
        from hj.core.intervals import merge_blocks
        merged = merge_blocks([_block("b1", "09:00", 30), _block("b2", "09:25", 30)])
        self.assertEqual(len(merged), 1)
        self.assertEqual((merged[0].start_time, merged[0].duration), ("09:00", 55))

    def test_touching_blocks_merge(self):
        """09:00+15 and 09:15+15 become 09:00-09:30."""
        from hj.core.intervals import merge_blocks
        merged = merge_blocks([_block("b1", "09:00", 15), _block("b2", "09:15", 15)])
        self.assertEqual(len(merged), 1)
        self.assertEqual((merged[0].start_time, merged[0].duration), ("09:00", 30))

    def test_bulk_merge_keeps_earliest_id(self):
        from hj.core.intervals import merge_blocks
        merged = merge_blocks([_block("late", "09:20", 30), _block("early", "09:00", 30)])
        self.assertEqual([b.id for b in merged], ["early"])

    def test_bulk_merge_is_order_independent(self):
        from hj.core.intervals import merge_blocks
        blocks = [_block("b1", "09:00", 30), _block("b2", "09:25", 30), _block("b3", "11:00", 15)]
        self.assertEqual(set(merge_blocks(blocks)), set(merge_blocks(list(reversed(blocks)))))

    def test_bulk_merge_is_idempotent_and_leaves_no_overlaps(self):
        from hj.core.intervals import merge_blocks
        rng = random.Random(7)
        for _ in range(50):
            blocks = [
                _block(f"b{i}", f"{rng.randrange(6, 18):02d}:{rng.choice((0, 10, 15, 30, 45)):02d}",
                       rng.choice((15, 20, 30, 60, 90)), habit_id=rng.choice(("habitA", "habitB")))
                for i in range(rng.randrange(1, 12))
            ]
            once = merge_blocks(blocks)
            self.assertEqual(merge_blocks(once), once)
            self._assert_no_overlap(once)

    def test_other_habits_and_days_are_untouched(self):
        from hj.core.intervals import merge_blocks
        blocks = [
            _block("a", "09:00", 30),
            _block("b", "09:10", 30, habit_id="habitB"),
            _block("c", "09:10", 30, day="2026-03-03"),
        ]
        self.assertEqual(merge_blocks(blocks), blocks)

    def test_incremental_insert_keeps_new_id(self):
        from hj.core.intervals import insert_block
        blocks = [_block("old", "09:00", 30), _block("other", "09:10", 30, habit_id="habitB")]
        result, stored = insert_block(blocks, _block("new", "09:20", 30))
        self.assertEqual(stored.id, "new")
        self.assertEqual((stored.start_time, stored.duration), ("09:00", 50))
        self.assertEqual({b.id for b in result}, {"new", "other"})

    def test_incremental_insert_absorbs_several_neighbours(self):
        from hj.core.intervals import insert_block
        blocks = [_block("a", "09:00", 15), _block("b", "10:00", 15), _block("c", "12:00", 15)]
        result, stored = insert_block(blocks, _block("new", "09:15", 45))
        self.assertEqual((stored.start_time, stored.duration), ("09:00", 75))
        self.assertEqual(sorted(b.id for b in result), ["c", "new"])

    def test_insert_without_overlap_appends(self):
        from hj.core.intervals import insert_block
        new = _block("new", "12:00", 15)
        result, stored = insert_block([_block("a", "09:00", 15)], new)
        self.assertIs(stored, new)
        self.assertEqual(len(result), 2)


# ──────────────────────────────────────────────────────────────────────────
# layout.py tests
# ──────────────────────────────────────────────────────────────────────────

class TestLayout(unittest.TestCase):

    def test_overlapping_habits_get_separate_tracks(self):
        from hj.core.layout import layout_day
        segments = {s.item.id: s for s in layout_day([
            _block("a", "09:00", 60),
            _block("b", "09:30", 60, habit_id="habitB"),
            _block("c", "11:00", 30, habit_id="habitC"),
        ])}
        self.assertEqual((segments["a"].track, segments["a"].track_count), (0, 2))
        self.assertEqual((segments["b"].track, segments["b"].track_count), (1, 2))
        self.assertEqual((segments["c"].track, segments["c"].track_count), (0, 1))

    def test_tracks_never_collide(self):
        from hj.core.layout import layout_day
        rng = random.Random(11)
        for _ in range(30):
            blocks = [
                _block(f"b{i}", f"{rng.randrange(0, 24):02d}:{rng.choice((0, 15, 30, 45)):02d}",
                       rng.choice((15, 30, 60, 120, 300)), habit_id=f"h{i}")
                for i in range(rng.randrange(1, 10))
            ]
            taken = {}
            for segment in layout_day(blocks):
                self.assertLess(segment.track, segment.track_count)
                for slot in segment.slots:
                    self.assertNotIn((slot, segment.track), taken)
                    taken[(slot, segment.track)] = segment.key

    def test_block_crossing_columns_has_one_segment_per_column(self):
        from hj.core.layout import layout_day
        segments = layout_day([_block("x", "07:30", 60)])
        self.assertEqual([s.key for s in segments], ["x:0", "x:1"])
        self.assertEqual([(s.start_row, s.row_span) for s in segments], [(30, 2), (0, 2)])

    def test_geometry(self):
        from hj.core.layout import Segment, segment_geometry
        segment = Segment(item=None, col=0, start_row=0, row_span=1, track=1, track_count=4)
        self.assertEqual(segment_geometry(segment, 200), (50.0, 50.0))

    def test_timer_segment_grows_to_current_slot(self):
        from hj.core.layout import timer_segments
        start = 1_000_000_000_000
        timer = _timer("t1", "habitA", start, start_time="09:00")
        segments = timer_segments([timer], start + 40 * 60 * 1000, (9, 40))
        self.assertEqual([(s.col, s.start_row, s.row_span) for s in segments], [(1, 4, 3)])

    def test_fresh_timer_covers_its_start_slot(self):
        from hj.core.layout import timer_segments
        timer = _timer("t1", "habitA", 5000, start_time="09:00")
        segments = timer_segments([timer], 5000, (9, 0))
        self.assertEqual(segments[0].row_span, 1)


# ──────────────────────────────────────────────────────────────────────────
# timer_state.py tests
# ──────────────────────────────────────────────────────────────────────────

class TestTimerManager(unittest.TestCase):

    def setUp(self):
        from hj.core.model import local_timestamp_ms
        self.at = lambda minutes: local_timestamp_ms(DAY, minutes)

    def test_short_run_stores_one_quantum(self):
        """A 37 second run still becomes a 15 minute block."""
        from hj.core.timer_state import TimerManager
        dataset = _dataset()
        manager = TimerManager(dataset)
        timer = manager.start("habitA", DAY, "09:00", self.at(540))
        block = manager.stop(timer.id, self.at(540) + 37_000)
        self.assertEqual((block.start_time, block.duration), ("09:00", 15))
        self.assertEqual(dataset.active_timers, [])
        self.assertEqual(dataset.time_blocks, [block])

    def test_duration_rounds_up_to_quantum(self):
        from hj.core.timer_state import rounded_duration
        self.assertEqual(rounded_duration(0), 15)
        self.assertEqual(rounded_duration(15 * 60), 15)
        self.assertEqual(rounded_duration(15 * 60 + 1), 30)
        self.assertEqual(rounded_duration(61 * 60, quantum=30), 90)

    def test_start_within_grace_absorbs_recent_block(self):
        """Starting at 09:40 after a 09:00-09:30 block runs from 09:00."""
        from hj.core.timer_state import TimerManager
        dataset = _dataset(blocks=[_block("b1", "09:00", 30)])
        timer = TimerManager(dataset).start("habitA", DAY, "09:40", self.at(580))
        self.assertEqual(timer.start_time, "09:00")
        self.assertEqual(timer.start_timestamp, self.at(540))
        self.assertEqual(dataset.time_blocks, [])

    def test_start_outside_grace_leaves_block(self):
        from hj.core.timer_state import TimerManager
        dataset = _dataset(blocks=[_block("b1", "09:00", 30)])
        timer = TimerManager(dataset).start("habitA", DAY, "09:50", self.at(590))
        self.assertEqual(timer.start_time, "09:50")
        self.assertEqual([b.id for b in dataset.time_blocks], ["b1"])

    def test_grace_ignores_other_habits(self):
        from hj.core.timer_state import TimerManager
        dataset = _dataset(habit_ids=("habitA", "habitB"), blocks=[_block("b1", "09:00", 30, habit_id="habitB")])
        timer = TimerManager(dataset).start("habitA", DAY, "09:40", self.at(580))
        self.assertEqual(timer.start_time, "09:40")
        self.assertEqual(len(dataset.time_blocks), 1)

    def test_second_start_keeps_single_earliest_timer(self):
        from hj.core.timer_state import TimerManager
        dataset = _dataset()
        manager = TimerManager(dataset)
        first = manager.start("habitA", DAY, "09:00", self.at(540))
        again = manager.start("habitA", DAY, "09:30", self.at(570))
        self.assertEqual(again, first)
        earlier = manager.start("habitA", DAY, "08:45", self.at(570), start_timestamp=self.at(525))
        self.assertEqual(len(dataset.active_timers), 1)
        self.assertEqual(earlier.id, first.id)
        self.assertEqual(earlier.start_timestamp, self.at(525))

    def test_earlier_start_replacing_timer_still_resumes_blocks(self):
        """Replacing a 09:30 timer with an 08:50 start picks up the 08:00-08:40 block."""
        from hj.core.timer_state import TimerManager
        dataset = _dataset(blocks=[_block("early", "08:00", 40)])
        manager = TimerManager(dataset)
        running = manager.start("habitA", DAY, "09:30", self.at(570))
        self.assertEqual(running.start_time, "09:30")
        self.assertEqual([b.id for b in dataset.time_blocks], ["early"])

        replaced = manager.start("habitA", DAY, "08:50", self.at(570), start_timestamp=self.at(530))
        self.assertEqual(replaced.id, running.id)
        self.assertEqual(replaced.start_time, "08:00")
        self.assertEqual(replaced.start_timestamp, self.at(480))
        self.assertEqual(dataset.time_blocks, [])
        self.assertEqual(dataset.active_timers, [replaced])

    def test_block_later_in_grace_window_is_absorbed(self):
        """A 09:45-10:00 block ends after 09:40 - 15 min, so a 09:40 start takes it in."""
        from hj.core.timer_state import TimerManager
        dataset = _dataset(blocks=[_block("later", "09:45", 15)])
        manager = TimerManager(dataset)
        timer = manager.start("habitA", DAY, "09:40", self.at(580))
        self.assertEqual(dataset.time_blocks, [])
        self.assertEqual(timer.start_time, "09:40")
        self.assertEqual(timer.start_timestamp, self.at(580))
        self.assertEqual(timer.absorbed_until, 600)

        block = manager.stop(timer.id, self.at(581))
        self.assertEqual((block.start_time, block.duration), ("09:40", 20))
        self.assertEqual(dataset.time_blocks, [block])

    def test_absorbed_extent_survives_serialization(self):
        from hj.core.model import ActiveTimer
        timer = ActiveTimer(id="t1", habit_id="habitA", date=DAY, start_time="09:40", start_timestamp=1, absorbed_until=600)
        raw = timer.to_dict()
        self.assertEqual(raw["absorbedUntil"], 600)
        self.assertEqual(ActiveTimer.from_dict(raw), timer)
        plain = _timer("t2", "habitA", 1)
        self.assertNotIn("absorbedUntil", plain.to_dict())
        self.assertIsNone(ActiveTimer.from_dict(plain.to_dict()).absorbed_until)

    def test_different_habits_run_together(self):
        from hj.core.timer_state import TimerManager
        dataset = _dataset(habit_ids=("habitA", "habitB"))
        manager = TimerManager(dataset)
        manager.start("habitA", DAY, "09:00", self.at(540))
        manager.start("habitB", DAY, "09:00", self.at(540))
        self.assertEqual(len(dataset.active_timers), 2)

    def test_stop_discards_timer_of_deleted_habit(self):
        from hj.core.timer_state import TimerManager
        dataset = _dataset()
        manager = TimerManager(dataset)
        timer = manager.start("habitA", DAY, "09:00", self.at(540))
        dataset.habits = []
        self.assertIsNone(manager.stop(timer.id, self.at(600)))
        self.assertEqual(dataset.active_timers, [])
        self.assertEqual(dataset.time_blocks, [])

    def test_stop_merges_into_neighbouring_block(self):
        from hj.core.timer_state import TimerManager
        dataset = _dataset(blocks=[_block("b1", "10:15", 30)])
        manager = TimerManager(dataset)
        timer = manager.start("habitA", DAY, "09:00", self.at(540))
        block = manager.stop(timer.id, self.at(615))
        self.assertEqual((block.start_time, block.duration), ("09:00", 105))
        self.assertEqual(len(dataset.time_blocks), 1)

    def test_resume_block_restarts_from_block_start(self):
        from hj.core.timer_state import TimerManager
        dataset = _dataset(blocks=[_block("b1", "09:00", 30)])
        manager = TimerManager(dataset)
        timer = manager.resume_block("b1", self.at(600))
        self.assertEqual(timer.start_time, "09:00")
        self.assertEqual(timer.start_timestamp, self.at(540))
        self.assertEqual(dataset.time_blocks, [])
        block = manager.stop(timer.id, self.at(600))
        self.assertEqual((block.start_time, block.duration), ("09:00", 60))

    def test_dedupe_prefers_earlier_then_lower_id(self):
        from hj.core.timer_state import dedupe_timers
        timers = [_timer("t2", "habitA", 100), _timer("t1", "habitA", 100), _timer("t3", "habitA", 50)]
        self.assertEqual([t.id for t in dedupe_timers(timers)], ["t3"])
        self.assertEqual([t.id for t in dedupe_timers(timers[:2])], ["t1"])


# ──────────────────────────────────────────────────────────────────────────
# reconcile.py tests
# ──────────────────────────────────────────────────────────────────────────

class TestReconcile(unittest.TestCase):

    def test_remote_wins_habit_collisions_and_local_only_is_kept(self):
        from dataclasses import replace
        from hj.core.reconcile import reconcile
        local = _dataset(habit_ids=("habitA", "habitL"))
        remote = _dataset(habit_ids=("habitA",))
        remote.habits = [replace(remote.habits[0], name="Renamed remotely")]
        merged = reconcile(local, remote).dataset
        names = {h.id: h.name for h in merged.habits}
        self.assertEqual(names, {"habitA": "Renamed remotely", "habitL": "habitL"})

    def test_blocks_from_both_sides_are_merged(self):
        from hj.core.reconcile import reconcile
        local = _dataset(blocks=[_block("l1", "09:00", 30)])
        remote = _dataset(blocks=[_block("r1", "09:15", 30), _block("r2", "14:00", 15)])
        merged = reconcile(local, remote).dataset
        spans = sorted((b.id, b.start_time, b.duration) for b in merged.time_blocks)
        self.assertEqual(spans, [("l1", "09:00", 45), ("r2", "14:00", 15)])

    def test_earliest_timer_wins_either_side(self):
        from hj.core.reconcile import reconcile
        local = _dataset(timers=[_timer("tl", "habitA", 100)])
        remote = _dataset(timers=[_timer("tr", "habitA", 200)])
        self.assertEqual([t.id for t in reconcile(local, remote).dataset.active_timers], ["tl"])
        self.assertEqual([t.id for t in reconcile(remote, local).dataset.active_timers], ["tl"])

    def test_blocks_and_timers_commute(self):
        from hj.core.reconcile import reconcile
        a = _dataset(
            habit_ids=("habitA", "habitB"),
            blocks=[_block("a1", "09:00", 30), _block("a2", "13:00", 60, habit_id="habitB")],
            timers=[_timer("ta", "habitA", 300)],
        )
        b = _dataset(
            habit_ids=("habitA", "habitB"),
            blocks=[_block("b1", "09:20", 30), _block("b2", "07:00", 15)],
            timers=[_timer("tb", "habitA", 200), _timer("tc", "habitB", 400)],
        )
        ab, ba = reconcile(a, b).dataset, reconcile(b, a).dataset
        self.assertEqual(set(ab.time_blocks), set(ba.time_blocks))
        self.assertEqual(set(ab.active_timers), set(ba.active_timers))

    def test_timer_for_habit_missing_everywhere_is_dropped(self):
        from hj.core.reconcile import reconcile
        local = _dataset()
        local.active_timers = [_timer("t1", "gone", 100)]
        self.assertEqual(reconcile(local, _dataset()).dataset.active_timers, [])

    def test_change_flags(self):
        from hj.core.reconcile import reconcile
        same = reconcile(_dataset(), _dataset())
        self.assertFalse(same.changed_local)
        self.assertFalse(same.changed_remote)

        remote_ahead = reconcile(_dataset(), _dataset(blocks=[_block("r1", "09:00", 15)]))
        self.assertTrue(remote_ahead.changed_local)
        self.assertFalse(remote_ahead.changed_remote)

        local_ahead = reconcile(_dataset(habit_ids=("habitA", "habitB")), _dataset())
        self.assertFalse(local_ahead.changed_local)
        self.assertTrue(local_ahead.changed_remote)

    def test_equality_ignores_order(self):
        from hj.core.reconcile import datasets_equal
        a = _dataset(habit_ids=("habitA", "habitB"), blocks=[_block("x", "09:00", 15), _block("y", "11:00", 15)])
        b = a.copy()
        b.habits.reverse()
        b.time_blocks.reverse()
        self.assertTrue(datasets_equal(a, b))
        b.time_blocks = b.time_blocks[:1]
        self.assertFalse(datasets_equal(a, b))


if __name__ == "__main__":
    unittest.main()
