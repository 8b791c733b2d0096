from abc import ABC, abstractmethod


class AbstractFabricClient(ABC):
    """Endpoint-group and contract operations the reconciler needs from the fabric.

    Every method is idempotent; failures surface as FabricError.
    """

    @abstractmethod
    async def create_epg(self, name: str, app: str, tenant: str, bd: str, vmm: str, vmm_type: str) -> None:
        ...

    @abstractmethod
    async def delete_epg(self, name: str, app: str, tenant: str) -> None:
        ...

    @abstractmethod
    async def epg_exists(self, name: str, app: str, tenant: str) -> bool:
        ...

    @abstractmethod
    async def consume_contract(self, epg: str, app: str, tenant: str, contract: str) -> None:
        ...

    @abstractmethod
    async def provide_contract(self, epg: str, app: str, tenant: str, contract: str) -> None:
        ...

    @abstractmethod
    async def get_consumed_contracts(self, epg: str, app: str, tenant: str) -> list[str]:
        ...

    @abstractmethod
    async def get_provided_contracts(self, epg: str, app: str, tenant: str) -> list[str]:
        ...

    async def close(self) -> None:
        return None
