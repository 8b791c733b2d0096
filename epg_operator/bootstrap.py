"""Startup configuration read from the ACI CNI installation.

Sources, all in the CNI system namespace:
- configmap aci-containers-config, key controller-config (JSON)
- configmap default-epg-contracts, keys provided / consumed (JSON arrays)
- the private key file of the aci-containers-controller pod, read through exec;
  APIC_PASSWORD is the fallback when no controller pod exists
"""

import json

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from epg_operator import env_vars
from epg_operator.cluster.api_client import ClusterClient
from epg_operator.common.exceptions import BootstrapError
from epg_operator.config import CniConfig
from epg_operator.logger import init_logger

logger = init_logger(__name__)

SYSTEM_NAMESPACE = "aci-containers-system"
CONFIG_CONFIGMAP = "aci-containers-config"
CONFIG_KEY = "controller-config"
CONTRACTS_CONFIGMAP = "default-epg-contracts"
CONTROLLER_POD_MARKER = "controller"


class ControllerConfig(BaseModel):
    """The subset of the aci-containers controller-config the operator reads."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    apic_hosts: list[str] = Field(alias="apic-hosts", min_length=1)
    apic_username: str = Field(alias="apic-username")
    apic_private_key_path: str = Field(default="", alias="apic-private-key-path")
    aci_policy_tenant: str = Field(alias="aci-policy-tenant")
    aci_podbd_dn: str = Field(alias="aci-podbd-dn")
    aci_vmm_domain: str = Field(alias="aci-vmm-domain")
    aci_vmm_type: str = Field(alias="aci-vmm-type")
    app_profile: str = Field(alias="app-profile")

    @property
    def bridge_domain(self) -> str:
        """BD name from a DN such as uni/tn-common/BD-kube-pod-bd."""
        parts = self.aci_podbd_dn.split("/")
        if len(parts) < 3:
            raise BootstrapError(f"unexpected aci-podbd-dn {self.aci_podbd_dn!r}")
        return parts[2].replace("BD-", "")


def parse_controller_config(raw: str) -> ControllerConfig:
    try:
        return ControllerConfig.model_validate_json(raw)
    except ValidationError as e:
        raise BootstrapError(f"invalid {CONFIG_KEY}: {e}") from e


def parse_contracts(raw: str | None, key: str) -> list[str]:
    if not raw:
        return []
    try:
        contracts = json.loads(raw)
    except json.JSONDecodeError as e:
        raise BootstrapError(f"{CONTRACTS_CONFIGMAP}/{key} is not valid JSON: {e}") from e
    if not isinstance(contracts, list):
        raise BootstrapError(f"{CONTRACTS_CONFIGMAP}/{key} must be a JSON array")
    return [str(contract) for contract in contracts]


async def _get_config_map_data(cluster: ClusterClient, name: str, namespace: str) -> dict[str, str]:
    items = await cluster.list_config_maps(namespace, name)
    if not items:
        raise BootstrapError(f"configmap {namespace}/{name} not found")
    if len(items) > 1:
        logger.warning(f"{len(items)} configmaps match {namespace}/{name}, using the first")
    return items[0].data or {}


async def _read_private_key(cluster: ClusterClient, namespace: str, key_path: str) -> str:
    pods = await cluster.list_pods(namespace)
    controller_pod = next((pod.metadata.name for pod in pods if CONTROLLER_POD_MARKER in pod.metadata.name), "")
    if not controller_pod:
        logger.info(f"No controller pod found in {namespace}, falling back to APIC_PASSWORD")
        return ""
    if not key_path:
        raise BootstrapError("apic-private-key-path is not set in controller-config")

    logger.info(f"Reading APIC private key {key_path} from pod {namespace}/{controller_pod}")
    try:
        private_key = await cluster.exec_in_pod(namespace, controller_pod, ["/bin/sh", "-c", f"cat {key_path}"])
    except Exception as e:
        raise BootstrapError(f"failed to read private key from pod {controller_pod}: {e}") from e
    if not private_key.strip():
        # APIC_PASSWORD only applies when the CNI runs without a controller pod
        raise BootstrapError("could not find cert or password")
    return private_key


async def load_cni_config(cluster: ClusterClient, namespace: str = SYSTEM_NAMESPACE) -> CniConfig:
    """Build the CniConfig, raising BootstrapError when anything is missing."""
    config_data = await _get_config_map_data(cluster, CONFIG_CONFIGMAP, namespace)
    contracts_data = await _get_config_map_data(cluster, CONTRACTS_CONFIGMAP, namespace)

    if CONFIG_KEY not in config_data:
        raise BootstrapError(f"configmap {namespace}/{CONFIG_CONFIGMAP} has no {CONFIG_KEY} key")
    controller_config = parse_controller_config(config_data[CONFIG_KEY])

    private_key = await _read_private_key(cluster, namespace, controller_config.apic_private_key_path)
    password = "" if private_key else env_vars.APIC_PASSWORD
    if not private_key and not password:
        raise BootstrapError("could not find cert or password")

    cni_config = CniConfig(
        apic_host=controller_config.apic_hosts[0],
        apic_username=controller_config.apic_username,
        apic_password=password,
        apic_private_key=private_key,
        key_path=controller_config.apic_private_key_path,
        tenant=controller_config.aci_policy_tenant,
        application_profile=controller_config.app_profile,
        bridge_domain=controller_config.bridge_domain,
        vmm_domain=controller_config.aci_vmm_domain,
        vmm_domain_type=controller_config.aci_vmm_type,
        provided_contracts=parse_contracts(contracts_data.get("provided"), "provided"),
        consumed_contracts=parse_contracts(contracts_data.get("consumed"), "consumed"),
    )
    logger.info(f"Loaded startup configuration: {cni_config}")
    return cni_config
