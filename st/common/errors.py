"""Error taxonomy shared by the timer core and its collaborators."""


class StudyTrackerError(Exception):
    """Base class for every error the core raises on purpose."""


class InvalidInput(StudyTrackerError, ValueError):
    """Rejected argument: blank session title, non-positive duration, bad preset index."""


class InvalidTransition(StudyTrackerError):
    """Lifecycle operation called from a state that doesn't allow it."""

    def __init__(self, operation, current_status):
        self.operation = operation
        self.current_status = current_status
        super().__init__(f"Cannot {operation} while session is {current_status}")


class PersistenceFailure(StudyTrackerError):
    """State file or remote backend write/read failed."""


class ClockAnomaly(StudyTrackerError):
    """A run segment produced a negative delta from the monotonic clock."""

    def __init__(self, delta):
        self.delta = delta
        super().__init__(f"Negative run-segment delta of {delta:.6f}s")
