import os
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    EPG_OPERATOR_LOGGING_PATH: str | None = None
    EPG_OPERATOR_LOGGING_FILE_NAME: str = "epg-operator.log"
    EPG_OPERATOR_LOGGING_LEVEL: str = "INFO"
    EPG_OPERATOR_CONFIG: str | None = None

    # Fabric credentials fallback when no controller pod holds a private key
    APIC_PASSWORD: str | None = None

    # Downward API
    POD_NAME: str | None = None
    POD_NAMESPACE: str | None = None


environment_variables: dict[str, Callable[[], Any]] = {
    "EPG_OPERATOR_LOGGING_PATH": lambda: os.getenv("EPG_OPERATOR_LOGGING_PATH"),
    "EPG_OPERATOR_LOGGING_FILE_NAME": lambda: os.getenv("EPG_OPERATOR_LOGGING_FILE_NAME", "epg-operator.log"),
    "EPG_OPERATOR_LOGGING_LEVEL": lambda: os.getenv("EPG_OPERATOR_LOGGING_LEVEL", "INFO"),
    "EPG_OPERATOR_CONFIG": lambda: os.getenv("EPG_OPERATOR_CONFIG"),
    "APIC_PASSWORD": lambda: os.getenv("APIC_PASSWORD", ""),
    "POD_NAME": lambda: os.getenv("POD_NAME", ""),
    "POD_NAMESPACE": lambda: os.getenv("POD_NAMESPACE", ""),
}


def __getattr__(name: str):
    if name in environment_variables:
        return environment_variables[name]()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def is_set(name: str):
    """Check if an environment variable is explicitly set."""
    if name in environment_variables:
        return name in os.environ
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
