"""EpgConf reconciler.

Drives one EpgConf toward its fabric counterpart:

    READ      fetch the EpgConf, a missing object needs no work
    DELETING  deletionTimestamp set: finalize (delete EPG, drop namespace
              annotation), then release the finalizer
    ENSURING  persist the finalizer before any fabric mutation, then
              create the EPG, annotate the namespace and add missing
              consumed/provided contracts; Status.state records the outcome

Contracts converge in one direction only: relations present on the fabric but
absent from the configuration are left in place.
"""

from contextlib import contextmanager
from typing import Any

from kubernetes.client.exceptions import ApiException

from epg_operator.cluster.api_client import ClusterClient
from epg_operator.cluster.constants import K8sConstants
from epg_operator.cluster.resource import (
    add_finalizer,
    endpoint_group_annotation,
    has_finalizer,
    is_being_deleted,
    remove_finalizer,
    set_state,
)
from epg_operator.common.exceptions import ClusterApiError, ReconcileError, is_not_found
from epg_operator.config import CniConfig
from epg_operator.fabric.abstract import AbstractFabricClient
from epg_operator.fabric.constants import epg_name
from epg_operator.logger import init_logger
from epg_operator.metrics import OperatorMetrics

logger = init_logger(__name__)


class EpgConfReconciler:
    def __init__(
        self,
        cluster: ClusterClient,
        fabric: AbstractFabricClient,
        cni_config: CniConfig,
        metrics: OperatorMetrics | None = None,
    ):
        self._cluster = cluster
        self._fabric = fabric
        self._cni_config = cni_config
        self._metrics = metrics

    async def reconcile(self, namespace: str, name: str) -> None:
        """Reconcile one EpgConf; any exception asks the supervisor to requeue."""
        try:
            conf = await self._cluster.get_epgconf(namespace, name)
        except ApiException as e:
            if is_not_found(e):
                logger.info("Epg config resource not found. Ignoring since object must be deleted")
                return
            logger.error(f"Failed to get Epg config resource: {e.reason}")
            raise

        if is_being_deleted(conf):
            if has_finalizer(conf):
                await self.finalize(conf)
                remove_finalizer(conf)
                await self._update_metadata(conf)
                logger.info("Removed finalizer, cleanup complete")
            return

        if add_finalizer(conf):
            logger.info(f"adding finalizer {K8sConstants.FINALIZER}")
            conf = await self._update_metadata(conf)

        try:
            await self.ensure(conf)
        except ReconcileError:
            set_state(conf, K8sConstants.STATE_FAILED)
            await self._update_status(conf)
            raise

        set_state(conf, K8sConstants.STATE_READY)
        await self._update_status(conf)

    async def ensure(self, conf: dict[str, Any]) -> None:
        namespace = conf["metadata"]["namespace"]
        epg = epg_name(namespace)
        cfg = self._cni_config

        with self._step("create_epg"):
            await self._fabric.create_epg(
                epg,
                cfg.application_profile,
                cfg.tenant,
                cfg.bridge_domain,
                cfg.vmm_domain,
                cfg.vmm_domain_type,
            )

        logger.info(f"Adds annotation on namespace {namespace}")
        with self._step("annotate_namespace"):
            await self._cluster.patch_namespace_annotations(
                namespace,
                {
                    K8sConstants.ANNOTATION_ENDPOINT_GROUP: endpoint_group_annotation(
                        cfg.tenant, cfg.application_profile, namespace
                    )
                },
            )

        with self._step("consume_contracts"):
            actual = await self._fabric.get_consumed_contracts(epg, cfg.application_profile, cfg.tenant)
            for contract in missing_contracts(cfg.consumed_contracts, actual):
                logger.info(f"EPG {epg} consuming contract {contract}")
                await self._fabric.consume_contract(epg, cfg.application_profile, cfg.tenant, contract)

        with self._step("provide_contracts"):
            actual = await self._fabric.get_provided_contracts(epg, cfg.application_profile, cfg.tenant)
            for contract in missing_contracts(cfg.provided_contracts, actual):
                logger.info(f"EPG {epg} providing contract {contract}")
                await self._fabric.provide_contract(epg, cfg.application_profile, cfg.tenant, contract)

    async def finalize(self, conf: dict[str, Any]) -> None:
        namespace = conf["metadata"]["namespace"]
        epg = epg_name(namespace)

        logger.info(f"Deleting EPG {epg}")
        with self._step("delete_epg"):
            await self._fabric.delete_epg(epg, self._cni_config.application_profile, self._cni_config.tenant)

        with self._step("remove_annotation"):
            try:
                await self._cluster.remove_namespace_annotation(
                    namespace, K8sConstants.ANNOTATION_ENDPOINT_GROUP_PATH
                )
            except ApiException as e:
                # 422: the annotation was never written; 404: the namespace is gone
                if e.status not in (404, 422):
                    raise
                logger.warning(f"Annotation already absent on namespace {namespace} ({e.status})")

    @contextmanager
    def _step(self, step: str):
        try:
            yield
        except Exception as e:
            logger.error(f"error occurred during {step}: {e}")
            if self._metrics is not None:
                self._metrics.record_step_error(step)
            raise ReconcileError(step, e) from e

    async def _update_metadata(self, conf: dict[str, Any]) -> dict[str, Any]:
        try:
            return await self._cluster.update_epgconf(conf)
        except ApiException as e:
            raise ClusterApiError(f"error occurred while updating finalizers: {e.reason}", e) from e

    async def _update_status(self, conf: dict[str, Any]) -> dict[str, Any]:
        try:
            return await self._cluster.update_epgconf_status(conf)
        except ApiException as e:
            raise ClusterApiError(f"error occurred while setting the status: {e.reason}", e) from e


def missing_contracts(desired, actual) -> list[str]:
    """Desired contracts not yet attached; order follows the configuration."""
    attached = set(actual)
    return [contract for contract in dict.fromkeys(desired) if contract not in attached]
