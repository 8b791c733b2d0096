import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from epg_operator.config import LeaderElectionConfig
from epg_operator.supervisor.leader_election import LeaderElector, _micro_time


@pytest.fixture
def election_config():
    return LeaderElectionConfig(
        lease_name="327369c9.custom.aci",
        namespace="aci-containers-system",
        lease_duration_seconds=15,
        renew_deadline_seconds=0.05,
        retry_period_seconds=0.01,
    )


@pytest.fixture
def elector(election_config):
    elector = LeaderElector(MagicMock(), election_config, identity="me")
    elector._api = MagicMock()
    return elector


def _lease(holder: str, renewed_ago: float, transitions: int = 0) -> client.V1Lease:
    renew_time = datetime.now(timezone.utc) - timedelta(seconds=renewed_ago)
    return client.V1Lease(
        metadata=client.V1ObjectMeta(name="327369c9.custom.aci", namespace="aci-containers-system"),
        spec=client.V1LeaseSpec(
            holder_identity=holder,
            lease_duration_seconds=15,
            acquire_time=renew_time,
            renew_time=renew_time,
            lease_transitions=transitions,
        ),
    )


class TestTryAcquireOrRenew:
    @pytest.mark.asyncio
    async def test_creates_missing_lease(self, elector):
        elector._api.read_namespaced_lease.side_effect = ApiException(status=404, reason="Not Found")

        assert await elector.try_acquire_or_renew()

        body = elector._api.create_namespaced_lease.call_args.kwargs["body"]
        assert body.metadata.name == "327369c9.custom.aci"
        assert body.spec.holder_identity == "me"
        assert body.spec.lease_transitions == 0

    @pytest.mark.asyncio
    async def test_create_race_lost(self, elector):
        elector._api.read_namespaced_lease.side_effect = ApiException(status=404, reason="Not Found")
        elector._api.create_namespaced_lease.side_effect = ApiException(status=409, reason="Conflict")

        assert not await elector.try_acquire_or_renew()

    @pytest.mark.asyncio
    async def test_lease_held_by_other(self, elector):
        elector._api.read_namespaced_lease.return_value = _lease("other", renewed_ago=1)

        assert not await elector.try_acquire_or_renew()
        elector._api.replace_namespaced_lease.assert_not_called()

    @pytest.mark.asyncio
    async def test_takes_over_expired_lease(self, elector):
        elector._api.read_namespaced_lease.return_value = _lease("other", renewed_ago=60, transitions=3)

        assert await elector.try_acquire_or_renew()

        spec = elector._api.replace_namespaced_lease.call_args.kwargs["body"].spec
        assert spec.holder_identity == "me"
        assert spec.lease_transitions == 4

    @pytest.mark.asyncio
    async def test_renews_own_lease(self, elector):
        elector._api.read_namespaced_lease.return_value = _lease("me", renewed_ago=1, transitions=2)

        assert await elector.try_acquire_or_renew()

        spec = elector._api.replace_namespaced_lease.call_args.kwargs["body"].spec
        assert spec.lease_transitions == 2

    @pytest.mark.asyncio
    async def test_replace_conflict(self, elector):
        elector._api.read_namespaced_lease.return_value = _lease("me", renewed_ago=1)
        elector._api.replace_namespaced_lease.side_effect = ApiException(status=409, reason="Conflict")

        assert not await elector.try_acquire_or_renew()

    def test_micro_time_format(self):
        value = datetime(2024, 5, 1, 12, 30, 45, 123, tzinfo=timezone.utc)

        assert _micro_time(value) == "2024-05-01T12:30:45.000123Z"


class TestRun:
    @pytest.mark.asyncio
    async def test_runs_callback_as_leader(self, elector):
        elector._api.read_namespaced_lease.side_effect = ApiException(status=404, reason="Not Found")
        observed = []

        async def lead():
            observed.append(elector.is_leader)

        assert await elector.run(lead)
        assert observed == [True]
        assert not elector.is_leader

    @pytest.mark.asyncio
    async def test_lost_lease_cancels_callback(self, elector):
        elector._api.read_namespaced_lease.side_effect = [
            ApiException(status=404, reason="Not Found"),
            *[_lease("other", renewed_ago=0) for _ in range(100)],
        ]
        cancelled = asyncio.Event()

        async def lead():
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

        assert not await asyncio.wait_for(elector.run(lead), timeout=2)
        assert cancelled.is_set()
        assert not elector.is_leader
