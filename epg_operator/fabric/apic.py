"""REST adapter for the ACI policy controller (APIC).

Exposes endpoint-group and contract operations in business terms and hides:
- distinguished-name layout of the managed objects
- password (aaaLogin token) or certificate (signed request) authentication
- the imdata error envelope returned by the controller
"""

import asyncio
import base64
import json
from typing import Any

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from epg_operator.common.exceptions import FabricAuthError, FabricError
from epg_operator.fabric.abstract import AbstractFabricClient
from epg_operator.fabric.constants import (
    FabricConstants,
    admin_cert_name,
    consumer_rn,
    epg_dn,
    orchestrator_annotation,
    provider_rn,
    vmm_domain_dn,
)
from epg_operator.logger import init_logger

logger = init_logger(__name__)

_CREATED_MODIFIED = "created,modified"


class ApicClient(AbstractFabricClient):
    """Fabric client backed by the APIC REST API.

    Safe to share between reconcile workers: httpx.AsyncClient is reused and
    the password login is serialized behind a lock.
    """

    def __init__(
        self,
        host: str,
        user: str,
        password: str = "",
        private_key: str = "",
        timeout: float = 30.0,
        verify: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client without touching the network.

        Args:
            host: APIC address, optionally with port
            user: APIC user name
            password: Password for token authentication
            private_key: PEM private key for certificate authentication, takes precedence over password
            timeout: Per-request timeout in seconds
            verify: Verify the controller's TLS certificate
            transport: Optional httpx transport, used by tests
        """
        if not password and not private_key:
            raise FabricAuthError("either a password or a private key is required")

        self.host = host
        self.user = user
        self._password = password
        self._private_key = (
            serialization.load_pem_private_key(private_key.encode(), password=None) if private_key else None
        )
        self._cert_dn = f"uni/userext/user-{user}/usercert-{admin_cert_name(user)}"
        self._token: str | None = None
        self._login_lock = asyncio.Lock()
        self._client = httpx.AsyncClient(
            base_url=f"https://{host}",
            verify=verify,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    async def create(cls, *args, **kwargs) -> "ApicClient":
        """Build a client and prove connectivity by listing the fabric nodes."""
        client = cls(*args, **kwargs)
        try:
            await client.list_system()
        except Exception:
            await client.close()
            raise
        mode = "certificate" if client.uses_certificate else "password"
        logger.info(f"Connected to APIC {client.host} as {client.user} using {mode} authentication")
        return client

    @property
    def uses_certificate(self) -> bool:
        return self._private_key is not None

    async def close(self) -> None:
        await self._client.aclose()

    # ---- authentication ----

    def _sign(self, payload: str) -> str:
        signature = self._private_key.sign(payload.encode(), padding.PKCS1v15(), hashes.SHA256())
        return base64.b64encode(signature).decode()

    async def _login(self) -> None:
        async with self._login_lock:
            body = json.dumps({"aaaUser": {"attributes": {"name": self.user, "pwd": self._password}}})
            try:
                response = await self._client.post(FabricConstants.LOGIN_PATH, content=body)
            except httpx.HTTPError as e:
                raise FabricError(f"APIC login transport error: {e}") from e
            try:
                imdata = self._parse(response)
                self._token = imdata[0]["aaaLogin"]["attributes"]["token"]
            except FabricError as e:
                raise FabricAuthError(f"APIC login failed for {self.user}: {e}", e.status_code) from e
            except (IndexError, KeyError) as e:
                raise FabricAuthError(f"APIC login returned no token for {self.user}") from e
            logger.debug(f"Logged in to APIC {self.host}")

    def _cookies(self, request: httpx.Request, body: str) -> dict[str, str]:
        if self._private_key is not None:
            payload = f"{request.method}{request.url.raw_path.decode()}{body}"
            return {
                FabricConstants.COOKIE_SIGNATURE: self._sign(payload),
                FabricConstants.COOKIE_CERT_ALGORITHM: "v1.0",
                FabricConstants.COOKIE_CERT_FINGERPRINT: "fingerprint",
                FabricConstants.COOKIE_CERT_DN: self._cert_dn,
            }
        return {FabricConstants.COOKIE_TOKEN: self._token or ""}

    # ---- transport ----

    @staticmethod
    def _parse(response: httpx.Response) -> list[dict[str, Any]]:
        try:
            document = response.json()
        except ValueError:
            document = {}
        imdata = document.get("imdata", []) if isinstance(document, dict) else []
        for item in imdata:
            if "error" in item:
                text = item["error"].get("attributes", {}).get("text", "unknown error")
                raise FabricError(text, response.status_code)
        if response.is_error:
            raise FabricError(f"{response.status_code} {response.reason_phrase}", response.status_code)
        return imdata

    async def _send(self, method: str, path: str, body: str, params: dict | None) -> httpx.Response:
        request = self._client.build_request(method, path, params=params, content=body or None)
        request.headers["Cookie"] = "; ".join(f"{k}={v}" for k, v in self._cookies(request, body).items())
        try:
            response = await self._client.send(request)
        except httpx.HTTPError as e:
            raise FabricError(f"{method} {path}: {e}") from e
        logger.debug(f"{method} {request.url.path} -> {response.status_code}")
        return response

    async def _request(self, method: str, path: str, payload: dict | None = None, params: dict | None = None):
        if self._private_key is None and self._token is None:
            await self._login()

        body = json.dumps(payload, separators=(",", ":")) if payload is not None else ""
        response = await self._send(method, path, body, params)
        if response.status_code == 403 and self._private_key is None:
            # tokens expire after the controller's idle timeout
            logger.info("APIC token rejected, logging in again")
            await self._login()
            response = await self._send(method, path, body, params)
        return self._parse(response)

    async def _save(self, parent_dn: str, payload: dict) -> None:
        await self._request("POST", FabricConstants.MO_PATH.format(dn=parent_dn), payload)

    # ---- operations ----

    async def list_system(self) -> list[dict[str, Any]]:
        return await self._request("GET", FabricConstants.CLASS_PATH.format(cls=FabricConstants.CLASS_TOP_SYSTEM))

    async def create_epg(self, name: str, app: str, tenant: str, bd: str, vmm: str, vmm_type: str) -> None:
        dn = epg_dn(tenant, app, name)
        await self._save(
            dn,
            {
                FabricConstants.CLASS_EPG: {
                    "attributes": {
                        "dn": dn,
                        "name": name,
                        "descr": FabricConstants.EPG_DESCRIPTION,
                        "annotation": orchestrator_annotation(vmm_type),
                        "status": _CREATED_MODIFIED,
                    }
                }
            },
        )
        await self._save(
            dn,
            {
                FabricConstants.CLASS_RS_BD: {
                    "attributes": {"dn": f"{dn}/rsbd", "tnFvBDName": bd, "status": _CREATED_MODIFIED}
                }
            },
        )
        domain_dn = vmm_domain_dn(vmm, vmm_type)
        await self._save(
            dn,
            {
                FabricConstants.CLASS_RS_DOM_ATT: {
                    "attributes": {"dn": f"{dn}/rsdomAtt-[{domain_dn}]", "tDn": domain_dn, "status": _CREATED_MODIFIED}
                }
            },
        )

        # the controller accepts the domain relation even when it cannot resolve it
        bindings = await self._request(
            "GET",
            FabricConstants.MO_PATH.format(dn=dn),
            params={"query-target": "children", "target-subtree-class": FabricConstants.CLASS_RS_DOM_ATT},
        )
        if not any(FabricConstants.CLASS_RS_DOM_ATT in item for item in bindings):
            raise FabricError(f"vmm domain {domain_dn} is not bound to {dn}")
        logger.info(f"Ensured EPG {dn} bound to bd {bd} and vmm domain {domain_dn}")

    async def delete_epg(self, name: str, app: str, tenant: str) -> None:
        dn = epg_dn(tenant, app, name)
        try:
            await self._request("DELETE", FabricConstants.MO_PATH.format(dn=dn))
        except FabricError as e:
            if e.status_code == 404:
                logger.warning(f"EPG {dn} not found, already deleted")
                return
            raise
        logger.info(f"Deleted EPG {dn}")

    async def epg_exists(self, name: str, app: str, tenant: str) -> bool:
        imdata = await self._request("GET", FabricConstants.MO_PATH.format(dn=epg_dn(tenant, app, name)))
        for item in imdata:
            if item.get(FabricConstants.CLASS_EPG, {}).get("attributes", {}).get("dn"):
                return True
        return False

    async def consume_contract(self, epg: str, app: str, tenant: str, contract: str) -> None:
        await self._relate_contract(FabricConstants.CLASS_RS_CONS, consumer_rn(contract), epg, app, tenant, contract)

    async def provide_contract(self, epg: str, app: str, tenant: str, contract: str) -> None:
        await self._relate_contract(FabricConstants.CLASS_RS_PROV, provider_rn(contract), epg, app, tenant, contract)

    async def _relate_contract(self, cls: str, rn: str, epg: str, app: str, tenant: str, contract: str) -> None:
        dn = epg_dn(tenant, app, epg)
        await self._save(
            dn,
            {cls: {"attributes": {"dn": f"{dn}/{rn}", "tnVzBrCPName": contract, "status": _CREATED_MODIFIED}}},
        )
        logger.info(f"Related contract {contract} to {dn} via {cls}")

    async def get_consumed_contracts(self, epg: str, app: str, tenant: str) -> list[str]:
        return await self._list_contracts(FabricConstants.CLASS_RS_CONS, epg, app, tenant)

    async def get_provided_contracts(self, epg: str, app: str, tenant: str) -> list[str]:
        return await self._list_contracts(FabricConstants.CLASS_RS_PROV, epg, app, tenant)

    async def _list_contracts(self, cls: str, epg: str, app: str, tenant: str) -> list[str]:
        path = FabricConstants.CHILD_CLASS_PATH.format(dn=epg_dn(tenant, app, epg), cls=cls)
        try:
            imdata = await self._request("GET", path)
        except FabricError as e:
            if FabricConstants.MAY_NOT_EXIST in str(e):
                return []
            raise
        return [item[cls]["attributes"]["tnVzBrCPName"] for item in imdata if cls in item]
