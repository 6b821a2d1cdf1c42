class SchedulingError(ValueError):
    """Base class for user-visible scheduling errors."""

    code = "error"


class SchedulingValidationError(SchedulingError):
    code = "validation_error"


class SchedulingNotFoundError(SchedulingError):
    code = "not_found"


class SchedulingPermissionError(SchedulingError):
    code = "forbidden"


class SchedulingConflictError(SchedulingError):
    """Another booking already holds an overlapping window."""

    code = "conflict"


class ProposalExpiredError(SchedulingError):
    code = "expired"


class InvalidStateTransitionError(SchedulingError):
    code = "invalid_state_transition"

    def __init__(self, current_status: str, action: str) -> None:
        self.current_status = current_status
        self.action = action
        super().__init__(f"Cannot {action.replace('_', ' ')} a booking in status '{current_status}'")
