"""
BranchCore Exceptions
=====================

Every failure the engine reports is a ``BranchCoreError``. The session facade
turns them into failure results, so callers only ever see ``error_code``,
``recoverable`` and ``context``, never a traceback (unless BRANCHCORE_DEBUG).

    BranchCoreError
    ├── RecoverableError
    │   └── TransientGatewayError      model call failed, caller may retry
    ├── IrrecoverableError
    │   ├── ConfigurationError
    │   ├── DependencyMissingError
    │   ├── ValidationError
    │   └── NotFoundError
    │       ├── BranchNotFoundError
    │       ├── ThoughtNotFoundError
    │       └── TaskNotFoundError
    └── PersistenceError               consumed by persistence.best_effort

Lookups such as ``GraphStore.get_branch`` return None; only operations that
address an id directly (``require_branch``, ``merge_branches``) raise.
"""

from typing import Any, Optional
import os


def _with(base: dict, extra: Optional[dict]) -> dict:
    if extra:
        base.update(extra)
    return base


class BranchCoreError(Exception):
    """
    Root of the BranchCore error hierarchy.

    ``error_code`` and ``recoverable`` are class defaults that a single raise
    site may override.
    """

    error_code: str = "BRANCHCORE_ERROR"
    recoverable: bool = True

    def __init__(
        self,
        message: str,
        context: Optional[dict] = None,
        error_code: Optional[str] = None,
        recoverable: Optional[bool] = None
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if error_code is not None:
            self.error_code = error_code
        if recoverable is not None:
            self.recoverable = recoverable

    def __str__(self) -> str:
        if not self.context:
            return self.message
        return f"{self.message} | context={self.context}"

    def to_dict(self, include_traceback: bool = False) -> dict:
        """Failure-result fields: error, code, recoverable, plus context and traceback when present."""
        payload = {
            "error": self.message,
            "code": self.error_code,
            "recoverable": self.recoverable,
        }
        if self.context:
            payload["context"] = self.context
        if include_traceback:
            import traceback
            payload["traceback"] = traceback.format_exc()
        return payload


class RecoverableError(BranchCoreError):
    """Transient failures; the same call may succeed later."""
    recoverable = True


class IrrecoverableError(BranchCoreError):
    """Failures caused by the request or the setup; retrying cannot help."""
    recoverable = False


# =============================================================================
# Gateway
# =============================================================================

class TransientGatewayError(RecoverableError):
    """An embedding or summarization call failed."""
    error_code = "TRANSIENT_GATEWAY_ERROR"

    def __init__(self, operation: str, reason: str, context: Optional[dict] = None):
        super().__init__(
            f"Gateway '{operation}' failed: {reason}",
            _with({"operation": operation}, context),
        )
        self.operation = operation


# =============================================================================
# Persistence
# =============================================================================

class PersistenceError(BranchCoreError):
    """
    The key-value store could not read or write a key.

    Callers never see it: ``best_effort`` logs it and substitutes a default.
    """
    error_code = "PERSISTENCE_ERROR"

    def __init__(self, key: str, operation: str, reason: str, context: Optional[dict] = None):
        super().__init__(
            f"Persistence {operation} failed for '{key}': {reason}",
            _with({"key": key, "operation": operation}, context),
        )
        self.key = key
        self.operation = operation


# =============================================================================
# Setup
# =============================================================================

class ConfigurationError(IrrecoverableError):
    error_code = "CONFIGURATION_ERROR"

    def __init__(self, config_key: str, reason: str, context: Optional[dict] = None):
        super().__init__(
            f"Invalid configuration value '{config_key}': {reason}",
            _with({"config_key": config_key}, context),
        )
        self.config_key = config_key


class DependencyMissingError(IrrecoverableError):
    """An optional extra (``models``, ``mcp``) is not installed."""
    error_code = "DEPENDENCY_MISSING_ERROR"

    def __init__(self, dependency: str, message: str = "", context: Optional[dict] = None):
        text = f"Missing dependency: {dependency}"
        if message:
            text = f"{text}. {message}"
        super().__init__(text, _with({"dependency": dependency}, context))
        self.dependency = dependency


# =============================================================================
# Input
# =============================================================================

_MAX_VALUE_REPR = 100


class ValidationError(IrrecoverableError):
    error_code = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str, value: Any = None, context: Optional[dict] = None):
        ctx = {"field": field}
        if value is not None:
            shown = str(value)
            if len(shown) > _MAX_VALUE_REPR:
                shown = shown[:_MAX_VALUE_REPR] + "..."
            ctx["value"] = shown
        super().__init__(f"Invalid '{field}': {reason}", _with(ctx, context))
        self.field = field
        self.reason = reason


class NotFoundError(IrrecoverableError):
    error_code = "NOT_FOUND_ERROR"
    resource_type = "Resource"

    def __init__(self, resource_id: str, context: Optional[dict] = None):
        super().__init__(
            f"{self.resource_type} '{resource_id}' not found",
            _with({"resource_type": self.resource_type, "resource_id": resource_id}, context),
        )
        self.resource_id = resource_id


class BranchNotFoundError(NotFoundError):
    error_code = "BRANCH_NOT_FOUND_ERROR"
    resource_type = "Branch"


class ThoughtNotFoundError(NotFoundError):
    error_code = "THOUGHT_NOT_FOUND_ERROR"
    resource_type = "Thought"


class TaskNotFoundError(NotFoundError):
    error_code = "TASK_NOT_FOUND_ERROR"
    resource_type = "Task"


def is_debug_mode() -> bool:
    """BRANCHCORE_DEBUG=1 adds tracebacks to failure results."""
    return os.environ.get("BRANCHCORE_DEBUG", "").lower() in ("true", "1", "yes")


__all__ = [
    "BranchCoreError",
    "RecoverableError",
    "IrrecoverableError",
    "TransientGatewayError",
    "PersistenceError",
    "ConfigurationError",
    "DependencyMissingError",
    "ValidationError",
    "NotFoundError",
    "BranchNotFoundError",
    "ThoughtNotFoundError",
    "TaskNotFoundError",
    "is_debug_mode",
]
