"""Custom exceptions for SpaceSync."""


class SpaceSyncError(Exception):
    """Base class for all SpaceSync errors."""


class SessionNotFoundError(SpaceSyncError):
    """Raised when a well-formed session identifier has no stored record."""

    def __init__(self, session_id: object, message: str | None = None):
        self.session_id = session_id
        super().__init__(message or f"Session {session_id} not found")


class InvalidSessionIdError(SessionNotFoundError):
    """Raised for identifiers that are neither a UUID nor a non-negative integer.

    Callers treat this exactly like a missing session.
    """

    def __init__(self, session_id: object):
        super().__init__(
            session_id, f"Session {session_id!r} not found (invalid identifier)"
        )


class MalformedRecordError(SpaceSyncError, ValueError):
    """Raised when a stored value cannot be parsed (bad JSON or bad UTF-8)."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Malformed record at {key}: {reason}")


class RecordSchemaError(MalformedRecordError):
    """Raised when a stored value parses but does not have the expected shape.

    Unlike other malformed records, these are left in place.
    """


class AuthenticationRequiredError(SpaceSyncError):
    """Raised when a remote operation is attempted without a valid credential."""

    def __init__(self, message: str = "Not authenticated", status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class StorageWriteError(SpaceSyncError):
    """Raised when the local store cannot persist a value."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Failed to write {key}: {reason}")


class StorageQuotaExceededError(StorageWriteError):
    """Raised when a write would push the local store past its quota."""

    def __init__(self, key: str, required: int, quota: int):
        self.required = required
        self.quota = quota
        super().__init__(key, f"quota exceeded ({required} > {quota} bytes)")


class RemoteServiceError(SpaceSyncError):
    """Raised when the remote conversation service rejects a request."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class DuplicateAdvisorError(SpaceSyncError):
    """Raised when adding an advisor whose name is already taken."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f'Advisor "{name}" already exists')


class AdvisorNotFoundError(SpaceSyncError):
    """Raised when an advisor or advisor group name matches nothing."""

    def __init__(self, name: str, kind: str = "Advisor"):
        self.name = name
        super().__init__(f'{kind} "{name}" not found')


class DuplicateGroupError(SpaceSyncError):
    """Raised when adding an advisor group whose name is already taken."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f'Group "{name}" already exists')
