from typing import Optional


class StoreError(Exception):
    """Base class for failures talking to the criteria API.

    ``message`` is meant to be shown to the user as-is.
    """

    default_message = "Failed to load semester data"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message or self.default_message
        self.status_code = status_code
        super().__init__(self.message)


class StoreUnavailableError(StoreError):
    default_message = "Criteria service is unreachable"


class StoreAuthError(StoreError):
    default_message = "Not authorized to access criteria"


class StoreRequestError(StoreError):
    default_message = "Criteria request was rejected"


class CriteriaSaveError(StoreError):
    default_message = "Save failed."


class SaveInProgressError(StoreError):
    default_message = "A save for this selection is already in progress."


class AuditError(StoreError):
    default_message = "Audit failed."


class AuditAuthError(StoreAuthError):
    default_message = "Not authorized to run the audit."
