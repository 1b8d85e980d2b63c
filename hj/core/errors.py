# Exceptions raised at the journal's boundaries. Overlaps and duplicate timers are never errors, they get merged.

class JournalError(Exception):
    pass

# A mutation that would break a stored invariant (bad duration, malformed HH:MM or date). Raised before anything
# is changed.
class InvalidEntryError(JournalError, ValueError):
    pass

class UnknownHabitError(JournalError, LookupError):
    pass

# Network/auth/IO failure talking to a remote store. Local state is never touched when this is raised.
class RemoteStoreError(JournalError, RuntimeError):
    pass
