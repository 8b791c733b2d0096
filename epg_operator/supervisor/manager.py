"""Supervisor driving the EpgConf reconciler.

Informer: list every EpgConf, then watch from the returned resourceVersion and
enqueue the key of each event; a 410 Gone or broken stream triggers a re-list.
Workers: pull keys from the WorkQueue and call the reconciler; errors requeue
the key with backoff. Resync: periodically re-enqueue every known key.
"""

import asyncio
import time

from kubernetes.client.exceptions import ApiException

from epg_operator.cluster.api_client import ClusterClient
from epg_operator.cluster.resource import object_key, split_key
from epg_operator.config import K8sConfig, ReconcileConfig
from epg_operator.logger import init_logger, reconcile_key_ctx_var
from epg_operator.metrics import OperatorMetrics
from epg_operator.reconciler import EpgConfReconciler
from epg_operator.supervisor.work_queue import WorkQueue

logger = init_logger(__name__)


class Supervisor:
    def __init__(
        self,
        cluster: ClusterClient,
        reconciler: EpgConfReconciler,
        reconcile_config: ReconcileConfig | None = None,
        k8s_config: K8sConfig | None = None,
        metrics: OperatorMetrics | None = None,
    ):
        self._cluster = cluster
        self._reconciler = reconciler
        self._reconcile_config = reconcile_config or ReconcileConfig()
        self._k8s_config = k8s_config or K8sConfig()
        self._metrics = metrics
        self.queue = WorkQueue(
            base_delay_seconds=self._reconcile_config.base_backoff_seconds,
            max_delay_seconds=self._reconcile_config.max_backoff_seconds,
        )
        self.known_keys: set[str] = set()
        self._stop_event = asyncio.Event()
        self.running = False
        if metrics is not None:
            metrics.bind_queue_depth(lambda: len(self.queue))

    def stop(self) -> None:
        self._stop_event.set()

    async def run(self) -> None:
        """Run informer, resync and workers until stop() is called."""
        tasks = [
            asyncio.create_task(self._informer(), name="epgconf-informer"),
            asyncio.create_task(self._resync_loop(), name="epgconf-resync"),
        ]
        tasks += [
            asyncio.create_task(self._worker(), name=f"epgconf-worker-{i}")
            for i in range(self._reconcile_config.workers)
        ]
        self.running = True
        logger.info(f"Starting EpgConf supervisor with {self._reconcile_config.workers} workers")
        try:
            await self._stop_event.wait()
        finally:
            self.running = False
            self.queue.shutdown()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("EpgConf supervisor stopped")

    async def _informer(self) -> None:
        resource_version = None
        while True:
            try:
                if resource_version is None:
                    items, resource_version = await self._cluster.list_epgconfs()
                    self.known_keys = {object_key(item) for item in items}
                    for key in self.known_keys:
                        self.queue.add(key)
                    logger.info(f"Listed {len(items)} EpgConf resources, resourceVersion={resource_version}")

                async for event in self._cluster.stream_epgconf_events(resource_version):
                    obj = event["object"]
                    new_rv = obj.get("metadata", {}).get("resourceVersion")
                    if new_rv:
                        resource_version = new_rv
                    key = object_key(obj)
                    if event["type"] == "DELETED":
                        self.known_keys.discard(key)
                    else:
                        self.known_keys.add(key)
                    logger.debug(f"{event['type']} {key}")
                    self.queue.add(key)
            except ApiException as e:
                if e.status == 410:
                    logger.info("Watch resourceVersion expired, re-listing")
                else:
                    logger.warning(f"Watch stream failed: {e.status} {e.reason}, re-listing")
                    await asyncio.sleep(self._k8s_config.watch_reconnect_delay_seconds)
                resource_version = None
            except Exception as e:
                logger.warning(
                    f"Watch stream disconnected: {e}, re-listing in {self._k8s_config.watch_reconnect_delay_seconds}s"
                )
                await asyncio.sleep(self._k8s_config.watch_reconnect_delay_seconds)
                resource_version = None

    async def _resync_loop(self) -> None:
        while True:
            await asyncio.sleep(self._reconcile_config.resync_period_seconds)
            logger.debug(f"Resync of {len(self.known_keys)} EpgConf resources")
            for key in list(self.known_keys):
                self.queue.add(key)

    async def _worker(self) -> None:
        while True:
            key = await self.queue.get()
            if key is None:
                return
            await self.process(key)

    async def process(self, key: str) -> None:
        token = reconcile_key_ctx_var.set(key)
        start = time.perf_counter()
        try:
            namespace, name = split_key(key)
            await self._reconciler.reconcile(namespace, name)
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            logger.error(f"Reconciler error, requeue in {delay:.3f}s: {e}")
            self._record("error", start)
        else:
            self.queue.forget(key)
            self._record("success", start)
        finally:
            self.queue.done(key)
            reconcile_key_ctx_var.reset(token)

    def _record(self, result: str, start: float) -> None:
        if self._metrics is not None:
            self._metrics.record_reconcile(result, time.perf_counter() - start)
