"""Exceptions raised by the hosting lifecycle, orchestrator and job queue."""


class HostingError(Exception):
    """Base class for hosting orchestration errors."""


class HostingNotFoundError(HostingError):
    pass


class HostingConflictError(HostingError):
    """The request conflicts with the current state of the hosting service."""


class InvalidStatusTransition(HostingConflictError):
    def __init__(self, current: str, new: str):
        self.current = current
        self.new = new
        super().__init__(f"Cannot transition hosting service from {current} to {new}")


class StepTransitionError(HostingError):
    def __init__(self, step: str, current: str, new: str):
        self.step = step
        super().__init__(f"Step {step} cannot move from {current} to {new}")


class DuplicateJobError(HostingConflictError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} is already pending or running")


class StepFailedError(HostingError):
    """A provisioning step failed; the job queue decides whether to retry."""

    def __init__(self, step: str, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"Step {step} failed: {cause}")


class TeardownFailedError(HostingError):
    def __init__(self, failed_actions: list[str]):
        self.failed_actions = failed_actions
        super().__init__(f"Unrecoverable teardown failure in: {', '.join(failed_actions)}")


class WaitTimeoutError(HostingError):
    pass


class ResourceStateError(HostingError):
    """A polled resource reached a terminal state other than the one awaited."""


class ResourceNotFoundError(HostingError):
    """A provider reported that the resource does not exist."""


class CredentialsGoneError(HostingError):
    """One-time credentials were already retrieved (or never issued)."""
