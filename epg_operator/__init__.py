from epg_operator.common.exceptions import (
    BootstrapError,
    ClusterApiError,
    EpgOperatorException,
    FabricAuthError,
    FabricError,
    ReconcileError,
)

__all__ = [
    "EpgOperatorException",
    "FabricError",
    "FabricAuthError",
    "BootstrapError",
    "ClusterApiError",
    "ReconcileError",
]
