"""Lease based leader election (coordination.k8s.io/v1).

Only the holder of the Lease runs the supervisor. The holder renews every
retry period; failing to renew within the renew deadline means leadership
is lost and the lead task is cancelled.
"""

import asyncio
import socket
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from epg_operator import env_vars
from epg_operator.common.exceptions import is_not_found
from epg_operator.config import LeaderElectionConfig
from epg_operator.logger import init_logger

logger = init_logger(__name__)


def _micro_time(value: datetime) -> str:
    # MicroTime requires exactly six fractional digits
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _as_datetime(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def default_identity() -> str:
    return f"{env_vars.POD_NAME or socket.gethostname()}_{uuid.uuid4()}"


class LeaderElector:
    def __init__(
        self,
        api_client: client.ApiClient,
        config: LeaderElectionConfig,
        identity: str | None = None,
    ):
        self._api = client.CoordinationV1Api(api_client)
        self._config = config
        self.identity = identity or default_identity()
        self.is_leader = False

    def _spec(self, now: datetime, acquire_time: datetime | None, transitions: int) -> client.V1LeaseSpec:
        return client.V1LeaseSpec(
            holder_identity=self.identity,
            lease_duration_seconds=self._config.lease_duration_seconds,
            acquire_time=_micro_time(acquire_time or now),
            renew_time=_micro_time(now),
            lease_transitions=transitions,
        )

    async def try_acquire_or_renew(self) -> bool:
        now = datetime.now(timezone.utc)
        try:
            lease = await asyncio.to_thread(
                self._api.read_namespaced_lease, name=self._config.lease_name, namespace=self._config.namespace
            )
        except ApiException as e:
            if not is_not_found(e):
                raise
            body = client.V1Lease(
                metadata=client.V1ObjectMeta(name=self._config.lease_name, namespace=self._config.namespace),
                spec=self._spec(now, now, 0),
            )
            try:
                await asyncio.to_thread(self._api.create_namespaced_lease, namespace=self._config.namespace, body=body)
            except ApiException as create_err:
                if create_err.status == 409:
                    return False
                raise
            return True

        spec = lease.spec or client.V1LeaseSpec()
        holder = spec.holder_identity
        renew_time = _as_datetime(spec.renew_time)
        duration = spec.lease_duration_seconds or self._config.lease_duration_seconds
        if holder and holder != self.identity and renew_time and renew_time + timedelta(seconds=duration) > now:
            return False

        transitions = spec.lease_transitions or 0
        acquire_time = _as_datetime(spec.acquire_time)
        if holder != self.identity:
            transitions += 1
            acquire_time = now
        lease.spec = self._spec(now, acquire_time, transitions)
        try:
            await asyncio.to_thread(
                self._api.replace_namespaced_lease,
                name=self._config.lease_name,
                namespace=self._config.namespace,
                body=lease,
            )
        except ApiException as e:
            if e.status == 409:
                return False
            raise
        return True

    async def _renew(self) -> bool:
        """Renew until success or until the renew deadline passes."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.renew_deadline_seconds
        while loop.time() < deadline:
            try:
                if await self.try_acquire_or_renew():
                    return True
            except ApiException as e:
                logger.warning(f"Failed to renew lease {self._config.lease_name}: {e.status} {e.reason}")
            await asyncio.sleep(self._config.retry_period_seconds)
        return False

    async def run(self, on_started_leading: Callable[[], Awaitable[None]]) -> bool:
        """Block until leadership is acquired, then run the lead callback.

        Returns:
            True if the callback finished on its own, False if the lease was lost
        """
        logger.info(f"attempting to acquire leader lease {self._config.namespace}/{self._config.lease_name}")
        while True:
            try:
                if await self.try_acquire_or_renew():
                    break
            except ApiException as e:
                logger.warning(f"Failed to acquire lease: {e.status} {e.reason}")
            await asyncio.sleep(self._config.retry_period_seconds)

        self.is_leader = True
        logger.info(f"successfully acquired lease {self._config.namespace}/{self._config.lease_name}")
        lead_task = asyncio.create_task(on_started_leading())
        try:
            while not lead_task.done():
                done, _ = await asyncio.wait({lead_task}, timeout=self._config.retry_period_seconds)
                if done:
                    break
                if not await self._renew():
                    logger.error(f"leader election lost: {self._config.lease_name}")
                    return False
            lead_task.result()
            return True
        finally:
            self.is_leader = False
            if not lead_task.done():
                lead_task.cancel()
                await asyncio.gather(lead_task, return_exceptions=True)
