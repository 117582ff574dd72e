from dataclasses import dataclass
from typing import Optional


@dataclass
class ErrorDetail:
    message: str
    code: str

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"ErrorDetail(message={self.message!r}, code={self.code!r})"


class RelStateError(Exception):
    """Base exception for all relstate errors."""

    default_detail: str = "A denormalization error occurred."
    default_code: str = "error"

    def __init__(
        self,
        detail: Optional[str] = None,
        code: Optional[str] = None,
    ):
        self.detail = ErrorDetail(
            detail if detail is not None else self.default_detail,
            code or self.default_code,
        )
        super().__init__(str(self.detail))


class MissingSchemaError(RelStateError):
    """No schema was given and none could be read from status metadata."""

    default_detail = "Schema is not provided and can not be resolved from status."
    default_code = "missing_schema"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, self.default_code)


class UnknownSchemaError(RelStateError):
    """A descriptor references a schema that is not part of the schema map."""

    default_detail = "Schema is not present in the schema map."
    default_code = "unknown_schema"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, self.default_code)


class CircularDenormalizationError(RelStateError):
    """Resolving a descriptor would revisit one of its ancestors."""

    default_detail = "Circular relationship detected."
    default_code = "circular_denormalization"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, self.default_code)


class TooDeepDenormalizationError(RelStateError):
    """Resolving a descriptor would exceed the nesting depth limit."""

    default_detail = "Nesting depth limit exceeded."
    default_code = "too_deep_denormalization"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, self.default_code)


class ConfigError(Exception):
    """Error raised for configuration issues."""
    pass
