from ecs_exporter.core.errors import (
    APIError,
    ClusterDeadlineExceeded,
    ConfigurationError,
    CycleOverrunError,
    ErrorKind,
    ExitCode,
    ExporterError,
    PermanentAPIError,
    SnapshotOrderError,
    StartupError,
    TransientAPIError,
    main_with_error_handling,
)

__all__ = [
    "APIError",
    "ClusterDeadlineExceeded",
    "ConfigurationError",
    "CycleOverrunError",
    "ErrorKind",
    "ExitCode",
    "ExporterError",
    "PermanentAPIError",
    "SnapshotOrderError",
    "StartupError",
    "TransientAPIError",
    "main_with_error_handling",
]
