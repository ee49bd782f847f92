from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class APIModel(BaseModel):
    """Base for request and response bodies."""

    model_config = ConfigDict(extra="ignore", protected_namespaces=())


class ErrorDetail(APIModel):
    """``detail`` body of an HTTP error that callers can branch on by ``code``."""

    code: str
    message: str
    retryable: bool = False


def error_detail(code: str, message: str, *, retryable: bool = False) -> dict[str, Any]:
    return ErrorDetail(code=code, message=message, retryable=retryable).model_dump()
