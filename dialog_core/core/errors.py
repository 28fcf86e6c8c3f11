"""Error taxonomy shared by every component.

- NotFoundError: the referenced session or user does not exist
- DependencyUnavailableError: a store, index or knowledge source is unreachable
- UnauthorizedError: the caller role lacks the required confidentiality tier
- MalformedInputError: a required field is missing or invalid
- SessionEndedError: a mutation arrived after the session's terminal write

Components recover from DependencyUnavailableError at their own boundary.
The action surface turns the remaining errors into response envelopes.
"""

from __future__ import annotations


class DialogCoreError(Exception):
    """Base class for all typed failures."""

    code = "internal_error"


class NotFoundError(DialogCoreError):
    code = "not_found"

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class DependencyUnavailableError(DialogCoreError):
    code = "dependency_unavailable"

    def __init__(self, dependency: str, reason: str | None = None) -> None:
        self.dependency = dependency
        self.reason = reason
        message = f"{dependency} unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class UnauthorizedError(DialogCoreError):
    """Never surfaced to callers; restricted data is omitted silently."""

    code = "unauthorized"

    def __init__(self, role: str) -> None:
        self.role = role
        super().__init__(f"role {role!r} lacks the required confidentiality tier")


class MalformedInputError(DialogCoreError):
    code = "malformed_input"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class SessionEndedError(DialogCoreError):
    code = "session_ended"

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"session already ended: {session_id}")
