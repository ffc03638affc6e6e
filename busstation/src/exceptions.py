"""
Centralized exception handling for the Bus Station Dispatch API.

This module provides:
- Base APIException class extending FastAPI's HTTPException.
- Dispatch-specific exceptions with appropriate status codes and headers.
- Utility functions for logging and routing exceptions.

Usage:
    - Raise specific exceptions in the store, workflow or route handlers.
    - Use `handle()` to normalize raw exceptions (Pydantic, Redis) into API-friendly responses.
"""

from traceback import format_exception
from logging import getLogger
from typing import Iterable, Optional
from fastapi import status, HTTPException
from pydantic import ValidationError
from redis.exceptions import RedisError
from sqlalchemy import Column


# ---------------------------------------------------------------------------
# Utility functions
# ---------------------------------------------------------------------------
def logException(e: Exception) -> None:
    """Log an exception with traceback using Uvicorn's error logger."""
    detail = str(format_exception(type(e), e, e.__traceback__))
    logger = getLogger("uvicorn.error")
    logger.error(detail)


# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------
class APIException(HTTPException):
    """
    Base class for all application-specific exceptions.

    Provides default handling of status_code, detail, and headers.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    detail = None
    headers = None

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("status_code", self.status_code)
        kwargs.setdefault("detail", self.detail)
        kwargs.setdefault("headers", self.headers)
        super().__init__(*args, **kwargs)


# ---------------------------------------------------------------------------
# Exception handling entrypoint
# ---------------------------------------------------------------------------
def handle(e: Exception):
    """
    Normalize and re-raise exceptions as API-friendly errors.

    Converts raw exceptions from Pydantic and Redis into corresponding
    APIException subclasses. Integrity faults are logged before being
    re-raised so they can be alerted on.
    """
    if isinstance(e, ValidationError):
        raise PydanticError(
            detail=e.errors(include_url=False, include_context=False, include_input=False)
        )
    if isinstance(e, UnknownStatus):
        logException(e)
        raise e
    if isinstance(e, APIException):
        raise e
    if isinstance(e, RedisError):
        raise RedisDBError(detail=str(e))

    logException(e)
    raise e


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------
class InvalidInput(APIException):
    """Malformed or business-rule-violating input; the caller must fix it."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    detail = "Invalid input provided"
    headers = {"X-Error": "InvalidInput"}


class PydanticError(InvalidInput):
    headers = {"X-Error": "PydanticError"}

    def __init__(self, detail):
        super().__init__(detail=detail)


class InvalidValue(InvalidInput):
    headers = {"X-Error": "InvalidValue"}

    def __init__(self, column_name: Column, reason: Optional[str] = None):
        detail = f"Invalid {column_name.name} is provided"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail=detail)


# ---------------------------------------------------------------------------
# Actor
# ---------------------------------------------------------------------------
class MissingActor(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "The X-Actor-ID header is required"
    headers = {"X-Error": "MissingActor"}


# ---------------------------------------------------------------------------
# Dispatch record
# ---------------------------------------------------------------------------
class InvalidIdentifier(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Invalid ID provided"
    headers = {"X-Error": "InvalidIdentifier"}


class UnknownStatus(APIException):
    """A stored or requested status outside the dispatch status table."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    headers = {"X-Error": "UnknownStatus"}

    def __init__(self, value):
        self.value = value
        super().__init__(detail=f"Unknown dispatch status '{value}'")


class IllegalTransition(APIException):
    """
    A requested status change that the transition graph does not allow.

    Carries the current status, the rejected target and the statuses that
    are allowed next so a caller can tell which step is missing.
    """

    status_code = status.HTTP_406_NOT_ACCEPTABLE
    headers = {"X-Error": "IllegalTransition"}

    def __init__(self, current, target, allowed_next: Iterable = ()):
        self.current = str(current)
        self.target = str(target)
        self.allowed_next = [str(s) for s in allowed_next]
        allowed = ", ".join(self.allowed_next) or "none"
        detail = {
            "message": f"Cannot move from {self.current} to {self.target}, "
            f"allowed next: {allowed}",
            "current": self.current,
            "target": self.target,
            "allowed_next": self.allowed_next,
        }
        super().__init__(detail=detail)


class ImmutableRecord(APIException):
    status_code = status.HTTP_412_PRECONDITION_FAILED
    headers = {"X-Error": "ImmutableRecord"}

    def __init__(self, current):
        self.current = str(current)
        detail = f"The dispatch record cannot be modified in {self.current} status"
        super().__init__(detail=detail)


# ---------------------------------------------------------------------------
# Infrastructure and collaborators
# ---------------------------------------------------------------------------
class CollaboratorFailure(APIException):
    """A downstream notification or lookup failed. Logged, never surfaced."""

    status_code = status.HTTP_502_BAD_GATEWAY
    headers = {"X-Error": "CollaboratorFailure"}

    def __init__(self, collaborator: str, reason: str):
        self.collaborator = collaborator
        super().__init__(detail=f"{collaborator} failed: {reason}")


class LockAcquireTimeout(APIException):
    status_code = status.HTTP_406_NOT_ACCEPTABLE
    headers = {"X-Error": "LockAcquireTimeout"}
    detail = "Lock acquisition timed out"


class RedisDBError(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    headers = {"X-Error": "RedisAPIError"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)
