"""Error taxonomy for the link shortener service.

Validation and conflict errors subclass ``ValueError`` so callers that only
care about "bad request" can keep catching ``ValueError``. Redirect outcomes
(not found / expired) are absent: the resolver reports them as a
``Resolution`` status, not as exceptions.

Hierarchy
=========
::
    ShortenerError
    ├─ ValidationError (ValueError)
    │   ├─ InvalidUrlError
    │   └─ InvalidCodeError
    │       └─ ReservedCodeError
    ├─ ConflictError (ValueError)
    │   └─ CodeAlreadyExistsError
    ├─ ExhaustedAttemptsError
    ├─ StoreError
    └─ ShortCodeNotFoundError
"""

__all__ = [
    "ShortenerError",
    "ValidationError",
    "InvalidUrlError",
    "InvalidCodeError",
    "ReservedCodeError",
    "ConflictError",
    "CodeAlreadyExistsError",
    "ExhaustedAttemptsError",
    "StoreError",
    "ShortCodeNotFoundError",
]


class ShortenerError(Exception):
    """Base class for all service errors."""


class ValidationError(ShortenerError, ValueError):
    """Caller-correctable input error."""


class InvalidUrlError(ValidationError):
    pass


class InvalidCodeError(ValidationError):
    pass


class ReservedCodeError(InvalidCodeError):
    def __init__(self, code: str):
        super().__init__(f"Short code '{code}' is a reserved word")
        self.code = code


class ConflictError(ShortenerError, ValueError):
    """The requested resource already exists."""


class CodeAlreadyExistsError(ConflictError):
    def __init__(self, code: str):
        super().__init__(f"Custom code '{code}' is already taken")
        self.code = code


class ExhaustedAttemptsError(ShortenerError):
    def __init__(self, attempts: int):
        super().__init__(f"Failed to generate a unique short code after {attempts} attempts")
        self.attempts = attempts


class StoreError(ShortenerError):
    """Wraps a failure of the underlying store on a critical path."""


class ShortCodeNotFoundError(ShortenerError):
    def __init__(self, code: str):
        super().__init__(f"Short code '{code}' not found")
        self.code = code
