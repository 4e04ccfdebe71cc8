"""
Unified error handling for fluxenv.

Errors fall into a few families:

- Validation errors: the provisioning request is unusable, nothing was created.
- Provisioning errors: a setup, bootstrap or readiness step failed. These carry
  a rollback handle covering everything created before the failure.
- Rollback errors: one or more compensating actions failed during teardown.
  Kept separate from provisioning errors so callers can tell "provisioning
  failed" from "provisioning failed and teardown also failed".

Exit Codes:
- 0: Success
- 10: Configuration error
- 11: Provider error (external tool or service failure)
- 12: Validation error
- 13: Rollback error
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Callable, Iterable, TypeVar

import structlog

if TYPE_CHECKING:
    from fluxenv.models import NamespacedName
    from fluxenv.rollback import RollbackHandle

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    VALIDATION_ERROR = 12
    ROLLBACK_ERROR = 13
    UNKNOWN_ERROR = 127


class FluxEnvError(Exception):
    """Base exception for fluxenv errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(FluxEnvError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class RequestValidationError(FluxEnvError):
    """Raised when a provisioning request is missing or has invalid fields."""

    exit_code = ExitCode.VALIDATION_ERROR

    def __init__(self, field_name: str, message: str):
        super().__init__(message, details={"field": field_name})
        self.field = field_name


class ProviderError(FluxEnvError):
    """Raised when an external tool or service fails."""

    exit_code = ExitCode.PROVIDER_ERROR


class CommandError(ProviderError):
    """Raised when an external command exits unsuccessfully."""

    def __init__(self, args: list[str], returncode: int | None, output: str):
        message = f"command {' '.join(args)!r} failed with exit code {returncode}"
        if output.strip():
            message = f"{message}: {output.strip()}"
        super().__init__(message, details={"returncode": returncode})
        self.command = list(args)
        self.returncode = returncode
        self.output = output


class SubsystemError(ProviderError):
    """Setup of one subsystem (git hosting or cluster) failed."""

    def __init__(self, subsystem: str, cause: BaseException):
        super().__init__(f"{subsystem} setup failed: {cause}", details={"subsystem": subsystem})
        self.subsystem = subsystem
        self.cause = cause


class ResourceExistsError(ProviderError):
    """Raised when a container or cluster name is already taken."""

    def __init__(self, kind: str, name: str, cause: CommandError):
        super().__init__(f"{kind} {name} already exists", details={"kind": kind, "name": name})
        self.kind = kind
        self.name = name
        self.cause = cause


class ResourceNotFoundError(ProviderError):
    """Raised by readiness probes when a resource does not exist (yet)."""

    def __init__(self, resource: NamespacedName):
        super().__init__(f"{resource.name} not found in namespace {resource.namespace}")
        self.resource = resource


class CyclicDependencyError(FluxEnvError):
    """Raised when reconciliation units depend on each other in a cycle."""

    exit_code = ExitCode.VALIDATION_ERROR

    def __init__(self, cycle: list[NamespacedName]):
        path = " -> ".join(str(node) for node in cycle)
        super().__init__(f"cyclic dependency: {path}", details={"cycle": path})
        self.cycle = cycle


class CombinedError(FluxEnvError):
    """Several independent failures reported as one error.

    Every underlying error is kept in ``errors`` and rendered in the message,
    nothing is truncated to the first failure.
    """

    exit_code = ExitCode.PROVIDER_ERROR

    def __init__(self, errors: Iterable[BaseException], message: str | None = None):
        self.errors = list(errors)
        rendered = "; ".join(str(err) for err in self.errors)
        super().__init__(f"{message}: {rendered}" if message else rendered)


class ReadinessError(CombinedError):
    """One or more resources failed or timed out while waiting for readiness."""


class RollbackError(CombinedError):
    """One or more compensating actions failed."""

    exit_code = ExitCode.ROLLBACK_ERROR


class ProvisioningError(FluxEnvError):
    """Provisioning failed; ``rollback`` tears down whatever was created."""

    exit_code = ExitCode.PROVIDER_ERROR

    def __init__(self, message: str, rollback: RollbackHandle, cause: BaseException | None = None):
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.rollback = rollback
        self.cause = cause
        self.rollback_error: RollbackError | None = None


class SetupError(ProvisioningError):
    """Git-hosting and/or cluster setup failed."""


class BootstrapError(ProvisioningError):
    """GitOps bootstrap (or local address discovery) failed."""


class ReconciliationError(ProvisioningError):
    """Reconciliation units could not be listed or ordered."""


class ReadinessWaitError(ProvisioningError):
    """Requested reconciliation units never became ready."""


def join_errors(*errors: BaseException | None) -> BaseException | None:
    """Combine errors, dropping ``None`` and flattening nested combinations.

    Returns ``None`` when there is nothing to report, the error itself when
    there is exactly one, and a :class:`CombinedError` otherwise.
    """
    flat: list[BaseException] = []
    for err in errors:
        if err is None:
            continue
        if type(err) is CombinedError:
            flat.extend(err.errors)
        else:
            flat.append(err)

    if not flat:
        return None
    if len(flat) == 1:
        return flat[0]
    return CombinedError(flat)


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Exit codes:
        - FluxEnvError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except FluxEnvError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: FluxEnvError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
