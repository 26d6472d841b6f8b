"""
Engine Errors

Taxonomy:
    EngineError
    ├── TransportError      → push stream drop (status flag only, never raised into app code)
    ├── FetchError          → pull request failed; block left untouched
    ├── DispatchError       → messaging send failed; recorded to history
    │   └── ConfigurationError  → gateway missing / not ready
    ├── ValidationError     → bad trigger or settings input; no store write
    └── TriggerNotFound
"""

from typing import Optional


class EngineError(Exception):
    """Base for all engine errors"""


class TransportError(EngineError):
    pass


class FetchError(EngineError):
    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class DispatchError(EngineError):
    def __init__(self, message: str, phone_number: Optional[str] = None):
        super().__init__(message)
        self.phone_number = phone_number


class ConfigurationError(DispatchError):
    pass


class ValidationError(EngineError):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_PHONE_NUMBER = "INVALID_PHONE_NUMBER"
    DUPLICATE_TRIGGER = "DUPLICATE_TRIGGER"

    def __init__(self, message: str, field: Optional[str] = None, code: str = VALIDATION_ERROR):
        super().__init__(message)
        self.field = field
        self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self), "field": self.field}


class TriggerNotFound(EngineError):
    def __init__(self, trigger_id: str):
        super().__init__(f"Trigger not found: {trigger_id}")
        self.trigger_id = trigger_id
