# ============================================================
# app/core/exceptions.py
#
# Fee engine error taxonomy.
#
#   not found (no version, no override)  → not an error, contributes nothing
#   FeeDataError      a read needed for one student failed
#   LedgerReadError   a ledger read failed, no safe partial result
#   FeeComputationError  what a user sees for on-demand generation
#
# The API layer maps these to HTTPException; the engine never
# raises HTTPException itself.
# ============================================================

from typing import Optional


class FeeEngineError(Exception):
    """Base class for fee engine failures."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        return self.message


class FeeDataError(FeeEngineError):
    """A data-store read needed to compute a fee item failed."""

    def __init__(self, operation: str, detail: Optional[str] = None):
        super().__init__(f"Data store read failed during {operation}", detail)
        self.operation = operation


class LedgerReadError(FeeEngineError):
    def __init__(self, student_id: str, detail: Optional[str] = None):
        super().__init__(f"Failed to read fee ledger for student {student_id}", detail)
        self.student_id = student_id


class FeeComputationError(FeeEngineError):
    """
    User-visible. The message never includes the underlying cause;
    keep that in `detail` for the logs.
    """

    def __init__(self, student_id: str, detail: Optional[str] = None):
        super().__init__(f"failed to compute fees for student {student_id}", detail)
        self.student_id = student_id


class FeeVersionConflictError(FeeEngineError):
    """A hike would produce an empty or overlapping effective window."""
