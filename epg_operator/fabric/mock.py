"""In-memory fabric keyed by EPG distinguished name."""

from dataclasses import dataclass, field

from epg_operator.fabric.abstract import AbstractFabricClient
from epg_operator.fabric.constants import epg_dn
from epg_operator.logger import init_logger

logger = init_logger(__name__)


@dataclass
class EndpointGroup:
    name: str
    tenant: str
    app: str
    bd: str
    vmm: str
    vmm_type: str
    consumed: list[str] = field(default_factory=list)
    provided: list[str] = field(default_factory=list)


class MockFabricClient(AbstractFabricClient):
    def __init__(self):
        self.endpoint_groups: dict[str, EndpointGroup] = {}
        # (operation, dn[, contract]) in call order
        self.calls: list[tuple] = []

    async def create_epg(self, name: str, app: str, tenant: str, bd: str, vmm: str, vmm_type: str) -> None:
        dn = epg_dn(tenant, app, name)
        logger.debug(f"Creating EPG {dn}")
        self.calls.append(("create_epg", dn))
        existing = self.endpoint_groups.get(dn)
        if existing is not None:
            existing.bd, existing.vmm, existing.vmm_type = bd, vmm, vmm_type
            return
        self.endpoint_groups[dn] = EndpointGroup(name=name, tenant=tenant, app=app, bd=bd, vmm=vmm, vmm_type=vmm_type)

    async def delete_epg(self, name: str, app: str, tenant: str) -> None:
        dn = epg_dn(tenant, app, name)
        logger.debug(f"Deleting EPG {dn}")
        self.calls.append(("delete_epg", dn))
        self.endpoint_groups.pop(dn, None)

    async def epg_exists(self, name: str, app: str, tenant: str) -> bool:
        return epg_dn(tenant, app, name) in self.endpoint_groups

    async def consume_contract(self, epg: str, app: str, tenant: str, contract: str) -> None:
        dn = epg_dn(tenant, app, epg)
        self.calls.append(("consume_contract", dn, contract))
        group = self.endpoint_groups[dn]
        if contract not in group.consumed:
            group.consumed.append(contract)

    async def provide_contract(self, epg: str, app: str, tenant: str, contract: str) -> None:
        dn = epg_dn(tenant, app, epg)
        self.calls.append(("provide_contract", dn, contract))
        group = self.endpoint_groups[dn]
        if contract not in group.provided:
            group.provided.append(contract)

    async def get_consumed_contracts(self, epg: str, app: str, tenant: str) -> list[str]:
        group = self.endpoint_groups.get(epg_dn(tenant, app, epg))
        return list(group.consumed) if group else []

    async def get_provided_contracts(self, epg: str, app: str, tenant: str) -> list[str]:
        group = self.endpoint_groups.get(epg_dn(tenant, app, epg))
        return list(group.provided) if group else []

    def get_epg(self, name: str, app: str, tenant: str) -> EndpointGroup | None:
        return self.endpoint_groups.get(epg_dn(tenant, app, name))
