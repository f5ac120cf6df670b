"""Shared response envelope."""

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """Uniform envelope returned by every endpoint: ``{success, message, data?, error?}``."""

    success: bool = True
    message: str
    data: Optional[T] = None
    error: Optional[Any] = None
