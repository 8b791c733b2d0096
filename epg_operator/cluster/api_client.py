"""Cluster API client for the EpgConf reconciler.

Wraps the Kubernetes CustomObjectsApi and CoreV1Api with:
- Rate limiting using aiolimiter (configurable QPS)
- Blocking client calls moved off the event loop with asyncio.to_thread
- A watch stream bridged from the client thread into an async iterator

EpgConf reads always go to the API server so a reconcile observes the
finalizer and status writes of the previous one.
"""

import asyncio
import threading
from collections.abc import AsyncIterator
from typing import Any

from aiolimiter import AsyncLimiter
from kubernetes import client, config as k8s_config, watch
from kubernetes.client.exceptions import ApiException
from kubernetes.stream import stream

from epg_operator.cluster.constants import K8sConstants
from epg_operator.logger import init_logger

logger = init_logger(__name__)

_END_OF_STREAM = object()


def load_api_client(kubeconfig_path: str | None = None) -> client.ApiClient:
    """Load kubeconfig (from file, in-cluster, or default) and build an ApiClient."""
    if kubeconfig_path:
        k8s_config.load_kube_config(config_file=kubeconfig_path)
    else:
        # Try in-cluster config first, fallback to default kubeconfig
        try:
            k8s_config.load_incluster_config()
        except k8s_config.ConfigException:
            k8s_config.load_kube_config()
    return client.ApiClient()


class ClusterClient:
    """Rate limited access to EpgConf objects, namespaces, configmaps and pods."""

    def __init__(
        self,
        api_client: client.ApiClient,
        qps: float = 5.0,
        watch_timeout_seconds: int = 60,
    ):
        """Initialize cluster client.

        Args:
            api_client: Kubernetes ApiClient instance
            qps: Queries per second limit (default: 5 for small clusters)
            watch_timeout_seconds: Server side watch timeout before the stream ends
        """
        self._api_client = api_client
        self._custom_api = client.CustomObjectsApi(api_client)
        self._core_api = client.CoreV1Api(api_client)
        self._rate_limiter = AsyncLimiter(max_rate=qps, time_period=1.0)
        self._watch_timeout_seconds = watch_timeout_seconds

    @property
    def api_client(self) -> client.ApiClient:
        return self._api_client

    # ---- EpgConf ----

    async def get_epgconf(self, namespace: str, name: str) -> dict[str, Any]:
        async with self._rate_limiter:
            return await asyncio.to_thread(
                self._custom_api.get_namespaced_custom_object,
                group=K8sConstants.CRD_GROUP,
                version=K8sConstants.CRD_VERSION,
                namespace=namespace,
                plural=K8sConstants.CRD_PLURAL,
                name=name,
            )

    async def update_epgconf(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace the object; metadata.resourceVersion guards against lost updates."""
        metadata = obj["metadata"]
        async with self._rate_limiter:
            return await asyncio.to_thread(
                self._custom_api.replace_namespaced_custom_object,
                group=K8sConstants.CRD_GROUP,
                version=K8sConstants.CRD_VERSION,
                namespace=metadata["namespace"],
                plural=K8sConstants.CRD_PLURAL,
                name=metadata["name"],
                body=obj,
            )

    async def update_epgconf_status(self, obj: dict[str, Any]) -> dict[str, Any]:
        metadata = obj["metadata"]
        async with self._rate_limiter:
            return await asyncio.to_thread(
                self._custom_api.replace_namespaced_custom_object_status,
                group=K8sConstants.CRD_GROUP,
                version=K8sConstants.CRD_VERSION,
                namespace=metadata["namespace"],
                plural=K8sConstants.CRD_PLURAL,
                name=metadata["name"],
                body=obj,
            )

    async def list_epgconfs(self) -> tuple[list[dict[str, Any]], str | None]:
        """List EpgConf objects in every namespace.

        Returns:
            (items, resourceVersion for the next watch)
        """
        async with self._rate_limiter:
            resources = await asyncio.to_thread(
                self._custom_api.list_cluster_custom_object,
                group=K8sConstants.CRD_GROUP,
                version=K8sConstants.CRD_VERSION,
                plural=K8sConstants.CRD_PLURAL,
            )
        return resources.get("items", []), resources.get("metadata", {}).get("resourceVersion")

    async def stream_epgconf_events(self, resource_version: str | None = None) -> AsyncIterator[dict[str, Any]]:
        """Yield ADDED/MODIFIED/DELETED events for one watch session.

        The session ends when the server closes the stream after the watch
        timeout. An ERROR event (e.g. 410 Gone) is raised as ApiException so
        the caller re-lists.
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        w = watch.Watch()

        def _emit(item) -> None:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                # event loop closed during shutdown
                logger.debug("Dropping watch event after event loop shutdown")

        def _watch_in_thread() -> None:
            try:
                for event in w.stream(
                    self._custom_api.list_cluster_custom_object,
                    group=K8sConstants.CRD_GROUP,
                    version=K8sConstants.CRD_VERSION,
                    plural=K8sConstants.CRD_PLURAL,
                    resource_version=resource_version,
                    timeout_seconds=self._watch_timeout_seconds,
                ):
                    _emit(event)
            except Exception as e:
                _emit(e)
            finally:
                _emit(_END_OF_STREAM)

        # a daemon thread, not the default executor: a read blocked until the
        # server-side timeout must not hold up loop or interpreter shutdown
        watcher = threading.Thread(target=_watch_in_thread, name="epgconf-watch", daemon=True)
        async with self._rate_limiter:
            watcher.start()
        try:
            while True:
                item = await queue.get()
                if item is _END_OF_STREAM:
                    break
                if isinstance(item, Exception):
                    raise item
                if item.get("type") == "ERROR":
                    status = item.get("object", {})
                    raise ApiException(status=status.get("code"), reason=status.get("message"))
                yield item
        finally:
            w.stop()

    # ---- Namespace ----

    async def patch_namespace_annotations(self, name: str, annotations: dict[str, str]) -> dict[str, Any]:
        """Strategic merge patch, other annotations are preserved."""
        body = {"metadata": {"annotations": annotations}}
        async with self._rate_limiter:
            return await asyncio.to_thread(
                self._core_api.patch_namespace,
                name=name,
                body=body,
                _content_type=K8sConstants.STRATEGIC_MERGE_PATCH,
            )

    async def remove_namespace_annotation(self, name: str, path: str) -> dict[str, Any]:
        """JSON patch remove; the API server rejects the patch when the path is absent."""
        body = [{"op": "remove", "path": path}]
        async with self._rate_limiter:
            return await asyncio.to_thread(
                self._core_api.patch_namespace,
                name=name,
                body=body,
                _content_type=K8sConstants.JSON_PATCH,
            )

    # ---- Bootstrap helpers ----

    async def list_config_maps(self, namespace: str, name: str) -> list[client.V1ConfigMap]:
        async with self._rate_limiter:
            result = await asyncio.to_thread(
                self._core_api.list_namespaced_config_map,
                namespace=namespace,
                field_selector=f"metadata.name={name}",
            )
        return result.items

    async def list_pods(self, namespace: str) -> list[client.V1Pod]:
        async with self._rate_limiter:
            result = await asyncio.to_thread(self._core_api.list_namespaced_pod, namespace=namespace)
        return result.items

    async def exec_in_pod(self, namespace: str, pod: str, command: list[str], timeout: int = 30) -> str:
        """Run a command in the pod's default container and return its stdout.

        Raises:
            RuntimeError: If the command exits non-zero
        """

        def _exec() -> tuple[int | None, str, str]:
            resp = stream(
                self._core_api.connect_get_namespaced_pod_exec,
                pod,
                namespace,
                command=command,
                stderr=True,
                stdin=False,
                stdout=True,
                tty=False,
                _preload_content=False,
            )
            try:
                resp.run_forever(timeout=timeout)
                return resp.returncode, resp.read_stdout(), resp.read_stderr()
            finally:
                resp.close()

        async with self._rate_limiter:
            returncode, stdout, stderr = await asyncio.to_thread(_exec)
        if returncode:
            raise RuntimeError(f"command {command} in pod {namespace}/{pod} exited {returncode}: {stderr}")
        return stdout
