# kiosk/errors.py
"""
Domain exceptions raised by services.
Routers translate them into HTTP responses; nothing here knows about HTTP.
"""


class KioskError(Exception):
    """Base class for all kiosk domain errors. The message is user-facing."""


class MissingFieldError(KioskError):
    def __init__(self, field: str):
        self.field = field
        super().__init__(f"{field} is required")


class DuplicateRefError(KioskError):
    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(f"Visitor with ref {ref} already exists")


class VisitorNotFound(KioskError):
    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(f"Visitor {ref} not found")


class StoreError(KioskError):
    """Record store failure other than not-found / duplicate."""


class InvalidImageFormat(KioskError):
    def __init__(self):
        super().__init__("Invalid base64 image format")


class StorageError(KioskError):
    """Object storage upload failed."""


class CameraError(KioskError):
    """Camera could not be opened or read."""


class InvalidTransition(KioskError):
    """Wizard action not allowed from the current step."""


class SessionCancelled(KioskError):
    """Registration session was cancelled while a call was in flight."""


class SessionBusy(KioskError):
    """Another wizard action is still running for this session."""
