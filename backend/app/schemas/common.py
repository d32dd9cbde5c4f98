# ============================================================
# app/schemas/common.py
#
# Response envelopes shared by every endpoint. These are the API
# contract, not the database tables.
# ============================================================

from pydantic import BaseModel
from typing import Optional, Generic, TypeVar

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """
    {
        "success": true,
        "message": "Ledger loaded",
        "data": { ... }
    }
    """
    success: bool = True
    message: str = "OK"
    data: Optional[T] = None


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    detail: Optional[str] = None
