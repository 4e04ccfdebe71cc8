"""Core modules for fluxenv - centralized error definitions."""

from fluxenv.core.errors import (
    BootstrapError,
    CombinedError,
    CommandError,
    ConfigurationError,
    CyclicDependencyError,
    ExitCode,
    FluxEnvError,
    ProviderError,
    ProvisioningError,
    ReadinessError,
    ReadinessWaitError,
    ReconciliationError,
    RequestValidationError,
    ResourceExistsError,
    ResourceNotFoundError,
    RollbackError,
    SetupError,
    SubsystemError,
    format_error_message,
    join_errors,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "FluxEnvError",
    "ConfigurationError",
    "RequestValidationError",
    "CommandError",
    "ResourceExistsError",
    "ResourceNotFoundError",
    "CyclicDependencyError",
    "CombinedError",
    "ReadinessError",
    "RollbackError",
    "ProviderError",
    "ProvisioningError",
    "SetupError",
    "SubsystemError",
    "ReconciliationError",
    "BootstrapError",
    "ReadinessWaitError",
    "join_errors",
    "main_with_error_handling",
    "format_error_message",
]
