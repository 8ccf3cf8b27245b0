"""
Error taxonomy for the hyperplane controller and drones.

Each error carries enough context (session id, epoch, cause) to be logged
or surfaced in a status message without further lookups.
"""


class HyperplaneError(Exception):
    """Base class for all hyperplane errors."""
    pass


class TransportUnavailableError(HyperplaneError):
    """Raised when the message channel cannot publish or subscribe."""

    def __init__(self, subject: str, cause: str = "transport unavailable"):
        self.subject = subject
        self.cause = cause
        super().__init__(f"Channel unavailable for subject '{subject}': {cause}")


class AssignmentTimeoutError(HyperplaneError):
    """Raised when no drone accepted a session within the attempt limit."""

    def __init__(self, session_id: str, epoch: int, attempts: int):
        self.session_id = session_id
        self.epoch = epoch
        self.attempts = attempts
        super().__init__(
            f"Session {session_id} was not accepted after {attempts} attempts (last epoch {epoch})"
        )


class EpochStaleError(HyperplaneError):
    """
    Raised when a message carries a superseded epoch.

    Never retried. The receiver discards the message.
    """

    def __init__(self, session_id: str, epoch: int, current_epoch: int):
        self.session_id = session_id
        self.epoch = epoch
        self.current_epoch = current_epoch
        super().__init__(
            f"Stale epoch {epoch} for session {session_id} (current epoch {current_epoch})"
        )


class CapacityExceededError(HyperplaneError):
    """Raised when no eligible drone has room for a session."""

    def __init__(self, requirement: int, session_id: str | None = None):
        self.requirement = requirement
        self.session_id = session_id
        super().__init__(
            f"No drone available with {requirement} free slot(s)"
            + (f" for session {session_id}" if session_id else "")
        )


class RuntimeFaultError(HyperplaneError):
    """Raised when a workload failed to start or exited abnormally."""

    def __init__(self, session_id: str, cause: str):
        self.session_id = session_id
        self.cause = cause
        super().__init__(f"Runtime fault for session {session_id}: {cause}")


class CertificateFailureError(HyperplaneError):
    """Raised when certificate issuance or renewal exhausted its retries."""

    def __init__(self, domain: str, cause: str):
        self.domain = domain
        self.cause = cause
        super().__init__(f"Certificate failure for {domain}: {cause}")


class PersistenceFailureError(HyperplaneError):
    """
    Raised when the durable log cannot be read or written.

    Fatal to a drone process.
    """

    def __init__(self, path: str, cause: str):
        self.path = path
        self.cause = cause
        super().__init__(f"Durable log failure at {path}: {cause}")


class InvalidTransitionError(HyperplaneError):
    """Raised when an event does not apply to the current session state."""

    def __init__(self, state: str, event: str):
        self.state = state
        self.event = event
        super().__init__(f"Event {event} is not valid in state {state}")
