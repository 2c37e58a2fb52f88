"""
Engine error taxonomy.

Every failure is a per-request outcome carrying an HTTP-like status code and
a human-readable message. Nothing here is retried by the engine.
"""


class ValueSetEngineError(Exception):
    """Base class for all engine failures."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ValueSetEngineError):
    """Sheet missing or owned by another tenant, or a referenced value set/field pairing is absent."""
    status_code = 404


class ConflictError(ValueSetEngineError):
    """Sheet status forbids mutation, or a value-set status transition is illegal."""
    status_code = 409


class InputValidationError(ValueSetEngineError):
    """Caller input is missing or malformed."""
    status_code = 400
