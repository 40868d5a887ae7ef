"""
Error taxonomy for the platform.

Every error raised across a service boundary derives from PlatformError and
carries a short machine-readable ``code`` plus optional ``details``. The API
layer renders these into a JSON envelope (see c4g.api.exceptions); the
provisioning worker converts them into Instance.status="error".
"""

from typing import Any, Dict, Optional


class PlatformError(Exception):
    """Base class for all platform errors."""

    code = "platform_error"
    status_code = 500

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PlatformError):
    """Missing or malformed input, rejected before any resource is touched."""

    code = "validation_error"
    status_code = 422


class ConflictError(PlatformError):
    """Resource already exists (instance for user, code already used)."""

    code = "conflict"
    status_code = 409

    def __init__(self, message: str = "", instance_id: Optional[str] = None, **details: Any):
        if instance_id:
            details["instance_id"] = instance_id
        super().__init__(message, details)
        self.instance_id = instance_id


class NotFoundError(PlatformError):
    code = "not_found"
    status_code = 404


class OperationTimeoutError(PlatformError):
    """A bounded operation exceeded its budget."""

    code = "timeout"
    status_code = 504


class EngineError(PlatformError):
    """Container runtime rejected an operation or is unreachable."""

    code = "engine_error"
    status_code = 502


class EncryptionFormatError(PlatformError):
    """Stored ciphertext is malformed or was not produced by encrypt()."""

    code = "encryption_format"
    status_code = 500


# ── Container runtime errors ─────────────────────────────────────────


class ContainerNotFoundError(NotFoundError, EngineError):
    """Container, network or volume is absent."""

    code = "container_not_found"
    status_code = 404


class ImagePullTimeoutError(OperationTimeoutError, EngineError):
    code = "image_pull_timeout"
    status_code = 504


class EngineUnavailableError(EngineError):
    """Connection or credential failure talking to the engine. Never retried."""

    code = "engine_unavailable"
    status_code = 503


class ResourceConflictError(ConflictError, EngineError):
    """Name already in use. Idempotent creators treat this as success."""

    code = "resource_conflict"
    status_code = 409
