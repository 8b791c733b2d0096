from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from epg_operator.cli.main import create_parser, options_from_args, run
from epg_operator.common.exceptions import FabricError
from epg_operator.config import CniConfig, ManagerOptions, OperatorConfig


class TestParser:
    def test_defaults(self):
        options = options_from_args(create_parser().parse_args([]))

        assert options == ManagerOptions(
            metrics_bind_address="0",
            health_probe_bind_address=":8081",
            leader_elect=False,
            metrics_secure=True,
            enable_http2=False,
        )

    def test_flags(self):
        args = create_parser().parse_args(
            [
                "--metrics-bind-address=:8443",
                "--health-probe-bind-address",
                ":9090",
                "--leader-elect",
                "--metrics-secure=false",
                "--enable-http2=true",
                "--kubeconfig",
                "/tmp/kubeconfig",
                "-v",
            ]
        )
        options = options_from_args(args)

        assert options.metrics_bind_address == ":8443"
        assert options.health_probe_bind_address == ":9090"
        assert options.leader_elect is True
        assert options.metrics_secure is False
        assert options.enable_http2 is True
        assert args.kubeconfig == "/tmp/kubeconfig"
        assert args.verbose

    def test_invalid_bool(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--leader-elect=maybe"])


class TestRun:
    @pytest.mark.asyncio
    async def test_fabric_setup_failure_exits_non_zero(self):
        cni_config = CniConfig(
            apic_host="10.0.0.1",
            apic_username="admin",
            apic_password="secret",
            tenant="t1",
            application_profile="a1",
            bridge_domain="bd1",
            vmm_domain="k8s",
            vmm_domain_type="Kubernetes",
        )
        options = ManagerOptions(metrics_bind_address="0", health_probe_bind_address="0")

        with (
            patch("epg_operator.cli.main.load_api_client", return_value=MagicMock()),
            patch("epg_operator.cli.main.load_cni_config", new_callable=AsyncMock, return_value=cni_config),
            patch(
                "epg_operator.cli.main.ApicClient.create",
                new_callable=AsyncMock,
                side_effect=FabricError("connection refused"),
            ),
        ):
            exit_code = await run(options, OperatorConfig())

        assert exit_code == 1

    @pytest.mark.asyncio
    async def test_supervisor_exits_cleanly(self):
        options = ManagerOptions(metrics_bind_address="0", health_probe_bind_address="0")
        supervisor = MagicMock()
        supervisor.run = AsyncMock(return_value=None)
        fabric = MagicMock()
        fabric.close = AsyncMock()

        with (
            patch("epg_operator.cli.main.load_api_client", return_value=MagicMock()),
            patch("epg_operator.cli.main.load_cni_config", new_callable=AsyncMock),
            patch("epg_operator.cli.main.ApicClient.create", new_callable=AsyncMock, return_value=fabric),
            patch("epg_operator.cli.main.OperatorMetrics"),
            patch("epg_operator.cli.main.Supervisor", return_value=supervisor),
        ):
            exit_code = await run(options, OperatorConfig())

        assert exit_code == 0
        supervisor.run.assert_awaited_once()
        fabric.close.assert_awaited_once()
