"""
Custom exceptions for the VirtualDatabase controller.

Every error raised by the store or the RDS provider is one of these, so the
reconciler can tell expected states (not found) from failures worth retrying.
"""
from typing import Any, Dict, Optional


class ControllerError(Exception):
    """
    Base exception for all controller errors.

    All custom exceptions should inherit from this base class.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ResourceNotFoundError(ControllerError):
    """
    Raised when a desired-state object does not exist in the store.

    This is an expected state, not a failure.
    """

    def __init__(self, kind: str, key: str, details: Optional[Dict[str, Any]] = None):
        self.kind = kind
        self.key = key
        super().__init__(
            message=f"{kind} '{key}' not found",
            details=details or {"kind": kind, "key": key},
        )


class StoreError(ControllerError):
    """
    Raised when a Kubernetes API call fails for any reason other than not found.

    Used for connection issues, conflicts, throttling, etc.
    """

    def __init__(self, message: str, status: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        self.status = status
        super().__init__(
            message=f"Store error: {message}",
            details=details or ({"status": status} if status is not None else None),
        )


class ProviderError(ControllerError):
    """
    Raised when an RDS API call fails.

    Used for throttling, permission errors, invalid parameters, etc.
    """

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.code = code
        super().__init__(
            message=f"RDS error: {message}",
            details=details or ({"code": code} if code else None),
        )


class InstanceNotFoundError(ProviderError):
    """Raised when the RDS instance does not exist."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(
            message=f"DB instance '{identifier}' not found",
            code="DBInstanceNotFound",
            details={"identifier": identifier},
        )


class InstanceAlreadyExistsError(ProviderError):
    """Raised when a create races with an instance that already exists."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(
            message=f"DB instance '{identifier}' already exists",
            code="DBInstanceAlreadyExists",
            details={"identifier": identifier},
        )


class ConfigurationError(ControllerError):
    """
    Raised when a VirtualDatabase points at a missing or invalid DatabaseClass.

    The user must fix the reference; the controller keeps retrying.
    """


__all__ = [
    "ControllerError",
    "ResourceNotFoundError",
    "StoreError",
    "ProviderError",
    "InstanceNotFoundError",
    "InstanceAlreadyExistsError",
    "ConfigurationError",
]
