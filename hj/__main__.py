import argparse
import sys
from hj.common.logger import log
from hj.core import config
from hj.core.errors import JournalError
from hj.core.slots import format_duration, format_elapsed, format_hhmm, from_ordinal, slot_to_time
from hj.core.snapshot import list_snapshots
from hj.core.store import JournalStore, today


def _habit(store, name_or_id):
    habit = store.find_habit(name_or_id)
    if habit is None:
        raise JournalError(f"No habit named or with id '{name_or_id}'")
    return habit

def _describe_block(store, block):
    habit = store.habit(block.habit_id)
    name = habit.name if habit else block.habit_id
    return f"{block.id}  {block.date} {block.start_time}  {format_duration(block.duration):<14} {name}"


#region === Commands ===

def cmd_habits(store, args):
    elapsed = store.elapsed()
    for habit in store.dataset.habits:
        timer = next((t for t in store.dataset.active_timers if t.habit_id == habit.id), None)
        running = f"  running {format_elapsed(elapsed[timer.id])}" if timer else ""
        done = "x" if store.is_complete(habit.id, today()) else " "
        print(f"[{done}] {habit.id}  {habit.name}{running}")

def cmd_add_habit(store, args):
    habit = store.add_habit(args.name, emoji=args.emoji)
    print(habit.id)

def cmd_log(store, args):
    habit = _habit(store, args.habit)
    print(_describe_block(store, store.insert_block(habit.id, args.date, args.start, args.duration)))

def cmd_select(store, args):
    habit = _habit(store, args.habit)
    print(_describe_block(store, store.insert_selection(
        habit.id, args.date, from_ordinal(args.start_slot), from_ordinal(args.end_slot)
    )))

def cmd_start(store, args):
    habit = _habit(store, args.habit)
    timer = store.start_timer(habit.id, day=args.date, start_time=args.at)
    print(f"{timer.id}  {habit.name} running since {timer.start_time} on {timer.date}")

def cmd_stop(store, args):
    habit = _habit(store, args.habit)
    block = store.stop_habit_timer(habit.id)
    if block is None:
        print(f"No timer running for '{habit.name}'")
        return
    print(_describe_block(store, block))

def cmd_resume(store, args):
    timer = store.resume_block(args.block_id)
    if timer is None:
        raise JournalError(f"No time-block with id '{args.block_id}'")
    print(f"{timer.id}  running since {timer.start_time} on {timer.date}")

def cmd_day(store, args):
    for segment in store.day_layout(args.date):
        hour, minute = slot_to_time(segment.col, segment.start_row)
        start = format_hhmm(hour * 60 + minute)
        print(f"col {segment.col}  {start}  rows {segment.row_span:>2}  track {segment.track + 1}/{segment.track_count}  "
              f"{_describe_block(store, segment.item)}")

def cmd_sync(store, args):
    # Qt is only needed for syncing
    from hj.runtime.cloud_sync import CloudSync, ensure_app, wait_for
    from hj.runtime.remote import FolderRemoteStore

    folder = args.folder or store.settings.get("remote_folder")
    if not folder:
        raise JournalError("No remote folder given and none configured in settings.json")
    ensure_app()
    sync = CloudSync(store, FolderRemoteStore(folder))
    future = sync.sync("manual")
    if not wait_for(future, timeout_s=args.timeout):
        raise JournalError(f"Sync did not finish within {args.timeout}s")
    sync.shutdown(flush=False)
    result = future.result()
    if result is None:
        print("Synced: there was no earlier remote copy")
    else:
        print(f"Synced: local {'updated' if result.changed_local else 'unchanged'}, "
              f"remote {'updated' if result.changed_remote else 'unchanged'}")

def cmd_snapshots(store, args):
    for path, taken in list_snapshots(config.SNAPSHOT_DIR):
        print(f"{taken:%Y-%m-%d %H:%M:%S}  {path.name}")

#endregion === Commands ===


def build_parser():
    parser = argparse.ArgumentParser(prog="habit-journal", description="Habit tracking with timed journal entries.")
    parser.add_argument("--user", help="User scope for the journal file")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("habits", help="List habits and running timers").set_defaults(func=cmd_habits)

    p = sub.add_parser("add-habit", help="Add a habit")
    p.add_argument("name")
    p.add_argument("--emoji")
    p.set_defaults(func=cmd_add_habit)

    p = sub.add_parser("log", help="Log a time-block")
    p.add_argument("habit")
    p.add_argument("date", help="YYYY-MM-DD")
    p.add_argument("start", help="HH:MM")
    p.add_argument("duration", type=int, help="Minutes")
    p.set_defaults(func=cmd_log)

    p = sub.add_parser("select", help="Log a grid selection given as slot ordinals (0-95)")
    p.add_argument("habit")
    p.add_argument("date")
    p.add_argument("start_slot", type=int)
    p.add_argument("end_slot", type=int)
    p.set_defaults(func=cmd_select)

    p = sub.add_parser("start", help="Start a timer")
    p.add_argument("habit")
    p.add_argument("--at", help="Start time HH:MM (default: start of the current slot)")
    p.add_argument("--date", help="Logical day (default: today)")
    p.set_defaults(func=cmd_start)

    p = sub.add_parser("stop", help="Stop a habit's timer and log it")
    p.add_argument("habit")
    p.set_defaults(func=cmd_stop)

    p = sub.add_parser("resume", help="Turn a time-block back into a running timer")
    p.add_argument("block_id")
    p.set_defaults(func=cmd_resume)

    p = sub.add_parser("day", help="Print a day's grid layout")
    p.add_argument("date", nargs="?", default=None)
    p.set_defaults(func=cmd_day)

    p = sub.add_parser("sync", help="Reconcile with a remote folder")
    p.add_argument("--folder")
    p.add_argument("--timeout", type=float, default=30.0)
    p.set_defaults(func=cmd_sync)

    sub.add_parser("snapshots", help="List local snapshots").set_defaults(func=cmd_snapshots)
    return parser

def main(argv=None):
    args = build_parser().parse_args(argv)
    if getattr(args, "date", "unset") is None:
        args.date = today()
    store = JournalStore.open(user=args.user)
    try:
        args.func(store, args)
    except (JournalError, ValueError) as e:
        log.warning(f"Command '{args.command}' failed: {e}")
        print(f"error: {e}", file=sys.stderr)
        return 2
    return 0

# Entry point for `python -m hj` and the habit-journal script
def run() -> None:
    try:
        sys.exit(main())
    except SystemExit:
        raise
    except Exception:
        # Full stack trace, always
        log.exception("Uncaught exception in entrypoint, exiting")
        sys.exit(1)

if __name__ == "__main__":
    run()
