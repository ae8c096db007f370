"""Exception hierarchy: stack validation, backend and state errors."""

from __future__ import annotations


class StackError(Exception):
    """Build-time error in the declared stack. Raised before any backend call."""

    pass


class InvalidResource(StackError):
    """Unknown resource type or missing/invalid properties."""

    def __init__(self, identity: str, reason: str) -> None:
        super().__init__(f"Resource {identity!r}: {reason}")
        self.identity = identity
        self.reason = reason


class DuplicateResource(StackError):
    """The same identity was declared twice."""

    def __init__(self, identity: str) -> None:
        super().__init__(f"Resource {identity!r} is declared more than once")
        self.identity = identity


class UnresolvedReference(StackError):
    """A reference points at an identity (or attribute) that does not exist."""

    def __init__(self, missing: str, referrer: str, attribute: str | None = None) -> None:
        if attribute is None:
            message = f"{referrer!r} references unknown resource {missing!r}"
        else:
            message = (f"{referrer!r} references unknown attribute "
                       f"{attribute!r} of {missing!r}")
        super().__init__(message)
        self.missing = missing
        self.referrer = referrer
        self.attribute = attribute


class CycleDetected(StackError):
    """The dependency graph contains a cycle (self references included)."""

    def __init__(self, cycle: list[str]) -> None:
        path = " -> ".join(cycle + cycle[:1])
        super().__init__(f"Dependency cycle detected: {path}")
        self.cycle = cycle


class StalePlan(StackError):
    """A saved plan no longer matches the stack it was generated from."""

    pass


class SynthesisStalled(Exception):
    """Internal invariant violation: the synthesizer could not batch every node."""

    def __init__(self, remaining: list[str]) -> None:
        super().__init__(
            f"Synthesis stalled with {len(remaining)} unbatched resources: "
            + ", ".join(remaining)
        )
        self.remaining = remaining


class StateError(Exception):
    """Base exception for state file problems."""

    pass


class StateCorruption(StateError):
    """State file could not be parsed or its checksum does not match."""

    pass


class StateLocked(StateError):
    """Another process holds the state lock."""

    pass


class BackendError(Exception):
    """Base exception for provisioning backend errors.

    Attributes:
        status_code: HTTP status code from the backend response, if any
        error_code: Error code reported by the backend (e.g., "Conflict")
        message: Human-readable error message
        request_id: Backend request ID, for support tickets
        response: The full response object
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        request_id: str | None = None,
        response: object | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.request_id = request_id
        self.response = response

    def __repr__(self) -> str:
        parts = [f"status_code={self.status_code}"]
        if self.error_code:
            parts.append(f"error_code={self.error_code!r}")
        if self.request_id:
            parts.append(f"request_id={self.request_id!r}")
        return f"{self.__class__.__name__}({self.message!r}, {', '.join(parts)})"


class BackendTransientError(BackendError):
    """Transient backend errors that can be retried."""

    pass


class BackendPermanentError(BackendError):
    """Permanent backend errors that should not be retried."""

    pass


# Transient errors (retryable)
class RateLimitError(BackendTransientError):
    """429 Too Many Requests - Rate limit exceeded."""

    pass


class ConflictError(BackendTransientError):
    """409 Conflict - Another operation on the resource is in progress."""

    pass


class PreconditionFailedError(BackendTransientError):
    """412 Precondition Failed - ETag mismatch, retry expected."""

    pass


class ServerError(BackendTransientError):
    """5xx Server Error - Transient server-side issue."""

    pass


class ProvisioningTimeout(BackendTransientError):
    """The resource did not become ready within the wait timeout."""

    pass


# Permanent errors (non-retryable)
class BadRequestError(BackendPermanentError):
    """400 Bad Request - Invalid request format."""

    pass


class UnauthorizedError(BackendPermanentError):
    """401 Unauthorized - Authentication failed."""

    pass


class ForbiddenError(BackendPermanentError):
    """403 Forbidden - Insufficient permissions."""

    pass


class NotFoundError(BackendPermanentError):
    """404 Not Found - Resource does not exist."""

    pass
