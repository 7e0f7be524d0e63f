from __future__ import annotations

from kubernetes.client import ApiException

from journal_controller.src.resources import ResourceIdentity


class ControllerStartupError(RuntimeError):
    """Raised when a startup precondition fails; the process must not continue."""


class ReconcileError(Exception):
    """A recoverable failure of one reconcile invocation.

    Carries the identity of the Journal being reconciled and the underlying
    cause (a :class:`kubernetes.client.ApiException`, or a urllib3 transport
    error when the API server could not be reached).
    """

    def __init__(self, identity: ResourceIdentity, action: str, cause: BaseException) -> None:
        self.identity = identity
        self.action = action
        self.cause = cause
        super().__init__(f"{action} failed for Journal {identity}: {describe_cause(cause)}")


def describe_cause(cause: BaseException) -> str:
    if isinstance(cause, ApiException):
        return f"status={cause.status} reason={cause.reason}"
    return f"{type(cause).__name__}: {cause}"
