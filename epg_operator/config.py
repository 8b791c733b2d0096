from dataclasses import dataclass, field
from pathlib import Path

import yaml

from epg_operator import env_vars
from epg_operator.logger import init_logger

logger = init_logger(__name__)

SERVICE_ACCOUNT_NAMESPACE_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"
DEFAULT_SYSTEM_NAMESPACE = "aci-containers-system"


@dataclass(frozen=True)
class CniConfig:
    """Fabric placement for every opted-in namespace, read once at startup."""

    apic_host: str
    apic_username: str
    tenant: str
    application_profile: str
    bridge_domain: str
    vmm_domain: str
    vmm_domain_type: str
    apic_password: str = field(default="", repr=False)
    apic_private_key: str = field(default="", repr=False)
    key_path: str = ""
    provided_contracts: tuple[str, ...] = ()
    consumed_contracts: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # accept lists from callers, keep the instance hashable and immutable
        object.__setattr__(self, "provided_contracts", tuple(self.provided_contracts))
        object.__setattr__(self, "consumed_contracts", tuple(self.consumed_contracts))

    @property
    def uses_certificate(self) -> bool:
        return bool(self.apic_private_key)


@dataclass
class K8sConfig:
    kubeconfig_path: str | None = None
    api_qps: float = 5.0
    watch_timeout_seconds: int = 60
    watch_reconnect_delay_seconds: int = 5


@dataclass
class ReconcileConfig:
    workers: int = 4
    resync_period_seconds: float = 600.0
    base_backoff_seconds: float = 0.005
    max_backoff_seconds: float = 1000.0


@dataclass
class FabricConfig:
    timeout_seconds: float = 30.0
    verify_ssl: bool = False


def _default_lease_namespace() -> str:
    if env_vars.POD_NAMESPACE:
        return env_vars.POD_NAMESPACE
    sa_namespace = Path(SERVICE_ACCOUNT_NAMESPACE_FILE)
    if sa_namespace.exists():
        return sa_namespace.read_text().strip()
    return DEFAULT_SYSTEM_NAMESPACE


@dataclass
class LeaderElectionConfig:
    lease_name: str = "327369c9.custom.aci"
    namespace: str = field(default_factory=_default_lease_namespace)
    lease_duration_seconds: int = 15
    renew_deadline_seconds: int = 10
    retry_period_seconds: int = 2


@dataclass
class OperatorConfig:
    k8s: K8sConfig = field(default_factory=K8sConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    fabric: FabricConfig = field(default_factory=FabricConfig)
    leader_election: LeaderElectionConfig = field(default_factory=LeaderElectionConfig)

    @classmethod
    def from_env(cls, config_path: str | None = None):
        if not config_path:
            config_path = env_vars.EPG_OPERATOR_CONFIG

        if not config_path:
            return cls()

        config_file = Path(config_path)

        if not config_file.exists():
            raise Exception(f"config file {config_file} not found")

        with open(config_file) as f:
            config = yaml.safe_load(f) or {}

        kwargs = {}
        if "k8s" in config:
            kwargs["k8s"] = K8sConfig(**config["k8s"])
        if "reconcile" in config:
            kwargs["reconcile"] = ReconcileConfig(**config["reconcile"])
        if "fabric" in config:
            kwargs["fabric"] = FabricConfig(**config["fabric"])
        if "leader_election" in config:
            kwargs["leader_election"] = LeaderElectionConfig(**config["leader_election"])

        return cls(**kwargs)

    def __post_init__(self) -> None:
        logger.info(f"init OperatorConfig: {self}")


@dataclass
class ManagerOptions:
    """Process flags, see epg_operator.cli.main."""

    metrics_bind_address: str = "0"
    health_probe_bind_address: str = ":8081"
    leader_elect: bool = False
    metrics_secure: bool = True
    enable_http2: bool = False
