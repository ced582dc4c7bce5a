"""Error taxonomy for the legal status engine."""

from typing import Optional


class LegalStatusError(Exception):
    """Base class for legal status engine errors."""

    kind = "internal"

    def __init__(self, op: str, message: str):
        super().__init__(f"{op}: {message}")
        self.op = op
        self.message = message

    def to_dict(self):
        """Serialize the error for event payloads."""
        return {"kind": self.kind, "op": self.op, "message": self.message}


class ValidationError(LegalStatusError):
    """Input failed validation; no side effects happened."""

    kind = "validation"


class NotFoundError(LegalStatusError):
    """A required record does not exist."""

    kind = "not_found"


class InternalError(LegalStatusError):
    """A repository or remote port failed."""

    kind = "internal"

    def __init__(self, op: str, message: str, cause: Optional[BaseException] = None):
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(op, message)
