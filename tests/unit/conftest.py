import copy
from datetime import datetime, timezone
from typing import Any

import pytest
from kubernetes.client.exceptions import ApiException
from unittest.mock import MagicMock

from epg_operator.cluster.api_client import ClusterClient
from epg_operator.cluster.constants import K8sConstants
from epg_operator.config import CniConfig
from epg_operator.fabric.mock import MockFabricClient
from epg_operator.reconciler import EpgConfReconciler


class FakeClusterClient:
    """In-memory cluster with the API server behaviour the reconciler relies on.

    - delete of an object carrying finalizers only sets deletionTimestamp
    - an update dropping the last finalizer of a deleting object removes it
    - a replace with a stale resourceVersion fails with 409
    - a JSON patch remove of an absent annotation fails with 422
    """

    def __init__(self):
        self.epgconfs: dict[str, dict[str, Any]] = {}
        self.namespaces: dict[str, dict[str, str]] = {}
        self.calls: list[tuple] = []
        self.fail_status_update = False
        self.fail_metadata_update = False
        self._resource_version = 0

    def _next_resource_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def create_namespace(self, name: str, annotations: dict[str, str] | None = None) -> None:
        self.namespaces[name] = dict(annotations or {})

    def create_epgconf(self, namespace: str, name: str) -> dict[str, Any]:
        obj = {
            "apiVersion": K8sConstants.CRD_API_VERSION,
            "kind": K8sConstants.CRD_KIND,
            "metadata": {
                "name": name,
                "namespace": namespace,
                "resourceVersion": self._next_resource_version(),
            },
            "spec": {},
        }
        self.epgconfs[f"{namespace}/{name}"] = obj
        return copy.deepcopy(obj)

    def delete_epgconf(self, namespace: str, name: str) -> None:
        key = f"{namespace}/{name}"
        obj = self.epgconfs[key]
        if obj["metadata"].get("finalizers"):
            obj["metadata"]["deletionTimestamp"] = datetime.now(timezone.utc).isoformat()
            obj["metadata"]["resourceVersion"] = self._next_resource_version()
        else:
            del self.epgconfs[key]

    def stored(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self.epgconfs.get(f"{namespace}/{name}")

    def _lookup(self, obj: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        key = f"{obj['metadata']['namespace']}/{obj['metadata']['name']}"
        stored = self.epgconfs.get(key)
        if stored is None:
            raise ApiException(status=404, reason="Not Found")
        if obj["metadata"].get("resourceVersion") != stored["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        return key, stored

    async def get_epgconf(self, namespace: str, name: str) -> dict[str, Any]:
        self.calls.append(("get_epgconf", namespace, name))
        stored = self.epgconfs.get(f"{namespace}/{name}")
        if stored is None:
            raise ApiException(status=404, reason="Not Found")
        return copy.deepcopy(stored)

    async def update_epgconf(self, obj: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("update_epgconf", list(obj["metadata"].get("finalizers") or [])))
        if self.fail_metadata_update:
            raise ApiException(status=500, reason="Internal Server Error")
        key, stored = self._lookup(obj)
        updated = copy.deepcopy(obj)
        # status is a subresource and is ignored on the main resource
        updated.pop("status", None)
        if stored.get("status") is not None:
            updated["status"] = copy.deepcopy(stored["status"])
        deletion_timestamp = stored["metadata"].get("deletionTimestamp")
        if deletion_timestamp:
            updated["metadata"]["deletionTimestamp"] = deletion_timestamp
        updated["metadata"]["resourceVersion"] = self._next_resource_version()
        if deletion_timestamp and not updated["metadata"].get("finalizers"):
            del self.epgconfs[key]
        else:
            self.epgconfs[key] = updated
        return copy.deepcopy(updated)

    async def update_epgconf_status(self, obj: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("update_epgconf_status", (obj.get("status") or {}).get("state")))
        if self.fail_status_update:
            raise ApiException(status=500, reason="Internal Server Error")
        _, stored = self._lookup(obj)
        stored["status"] = copy.deepcopy(obj.get("status"))
        stored["metadata"]["resourceVersion"] = self._next_resource_version()
        return copy.deepcopy(stored)

    async def patch_namespace_annotations(self, name: str, annotations: dict[str, str]) -> dict[str, Any]:
        self.calls.append(("patch_namespace_annotations", name))
        if name not in self.namespaces:
            raise ApiException(status=404, reason="Not Found")
        self.namespaces[name].update(annotations)
        return {"metadata": {"name": name, "annotations": dict(self.namespaces[name])}}

    async def remove_namespace_annotation(self, name: str, path: str) -> dict[str, Any]:
        self.calls.append(("remove_namespace_annotation", name))
        if name not in self.namespaces:
            raise ApiException(status=404, reason="Not Found")
        key = path.rsplit("/", 1)[1].replace("~1", "/")
        if key not in self.namespaces[name]:
            raise ApiException(status=422, reason="Unprocessable Entity")
        del self.namespaces[name][key]
        return {"metadata": {"name": name, "annotations": dict(self.namespaces[name])}}


@pytest.fixture
def cni_config():
    return CniConfig(
        apic_host="10.0.0.1",
        apic_username="admin",
        apic_password="secret",
        tenant="t1",
        application_profile="a1",
        bridge_domain="bd1",
        vmm_domain="k8s",
        vmm_domain_type="Kubernetes",
        provided_contracts=["c-p1"],
        consumed_contracts=["c-c1"],
    )


@pytest.fixture
def fabric():
    return MockFabricClient()


@pytest.fixture
def cluster():
    fake = FakeClusterClient()
    fake.create_namespace("ns-1")
    return fake


@pytest.fixture
def reconciler(cluster, fabric, cni_config):
    return EpgConfReconciler(cluster=cluster, fabric=fabric, cni_config=cni_config)


@pytest.fixture
def mock_api_client():
    return MagicMock()


@pytest.fixture
def cluster_client(mock_api_client):
    return ClusterClient(api_client=mock_api_client, qps=100.0, watch_timeout_seconds=30)
