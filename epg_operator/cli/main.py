#!/usr/bin/env python3
"""
EPG config operator
Keeps one fabric EPG per namespace that holds an Epgconf resource
"""

import argparse
import asyncio
import signal
import sys

from epg_operator.bootstrap import load_cni_config
from epg_operator.cluster.api_client import ClusterClient, load_api_client
from epg_operator.common.exceptions import BootstrapError, FabricError
from epg_operator.config import ManagerOptions, OperatorConfig
from epg_operator.fabric.apic import ApicClient
from epg_operator.logger import init_logger, set_verbose
from epg_operator.metrics import OperatorMetrics
from epg_operator.reconciler import EpgConfReconciler
from epg_operator.supervisor.leader_election import LeaderElector
from epg_operator.supervisor.manager import Supervisor
from epg_operator.supervisor.server import build_server, create_metrics_app, create_probe_app

logger = init_logger("epg_operator.setup")


def str2bool(value: str) -> bool:
    if value.lower() in ("true", "1", "yes"):
        return True
    if value.lower() in ("false", "0", "no"):
        return False
    raise argparse.ArgumentTypeError(f"boolean value expected, got {value!r}")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="epg-operator",
        description="Synchronize Epgconf resources with ACI endpoint groups",
    )
    parser.add_argument(
        "--metrics-bind-address",
        default="0",
        help="The address the metrics endpoint binds to. "
        "Use :8443 for HTTPS or :8080 for HTTP, or leave as 0 to disable the metrics service.",
    )
    parser.add_argument(
        "--health-probe-bind-address", default=":8081", help="The address the probe endpoint binds to."
    )
    parser.add_argument(
        "--leader-elect",
        type=str2bool,
        nargs="?",
        const=True,
        default=False,
        help="Enable leader election for controller manager. "
        "Enabling this will ensure there is only one active controller manager.",
    )
    parser.add_argument(
        "--metrics-secure",
        type=str2bool,
        nargs="?",
        const=True,
        default=True,
        help="If set, the metrics endpoint is served securely via HTTPS. Use --metrics-secure=false to use HTTP instead.",
    )
    parser.add_argument(
        "--enable-http2",
        type=str2bool,
        nargs="?",
        const=True,
        default=False,
        help="If set, HTTP/2 will be enabled for the metrics server",
    )
    parser.add_argument("--kubeconfig", default=None, help="Path to a kubeconfig, in-cluster config when unset")
    parser.add_argument("--config", default=None, help="Path to the operator YAML config (default: $EPG_OPERATOR_CONFIG)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    return parser


def options_from_args(args: argparse.Namespace) -> ManagerOptions:
    return ManagerOptions(
        metrics_bind_address=args.metrics_bind_address,
        health_probe_bind_address=args.health_probe_bind_address,
        leader_elect=args.leader_elect,
        metrics_secure=args.metrics_secure,
        enable_http2=args.enable_http2,
    )


async def run(options: ManagerOptions, operator_config: OperatorConfig) -> int:
    """Bootstrap, then run the supervisor until a signal arrives. Returns the exit code."""
    if not options.enable_http2:
        logger.info("disabling http/2")
    else:
        logger.warning("HTTP/2 requested but the embedded server only speaks HTTP/1.1")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    supervisor: Supervisor | None = None
    servers = [
        build_server(create_probe_app(lambda: supervisor is not None), options.health_probe_bind_address),
        build_server(create_metrics_app(), options.metrics_bind_address, secure=options.metrics_secure),
    ]
    servers = [server for server in servers if server is not None]
    server_tasks = [asyncio.create_task(server.serve()) for server in servers]

    api_client = None
    fabric = None
    try:
        api_client = load_api_client(operator_config.k8s.kubeconfig_path)
        cluster = ClusterClient(
            api_client,
            qps=operator_config.k8s.api_qps,
            watch_timeout_seconds=operator_config.k8s.watch_timeout_seconds,
        )

        try:
            cni_config = await load_cni_config(cluster)
        except BootstrapError as e:
            logger.error(f"unable to get startup configuration: {e}")
            return 1

        try:
            fabric = await ApicClient.create(
                cni_config.apic_host,
                cni_config.apic_username,
                password=cni_config.apic_password,
                private_key=cni_config.apic_private_key,
                timeout=operator_config.fabric.timeout_seconds,
                verify=operator_config.fabric.verify_ssl,
            )
        except FabricError as e:
            logger.error(f"unable to setup apic client: {e}")
            return 1

        metrics = OperatorMetrics()
        reconciler = EpgConfReconciler(cluster, fabric, cni_config, metrics=metrics)
        supervisor = Supervisor(
            cluster,
            reconciler,
            reconcile_config=operator_config.reconcile,
            k8s_config=operator_config.k8s,
            metrics=metrics,
        )

        elector = LeaderElector(api_client, operator_config.leader_election) if options.leader_elect else None
        logger.info("starting manager")
        main_task = asyncio.create_task(elector.run(supervisor.run) if elector else supervisor.run())

        async def _stop_on_signal():
            await stop_event.wait()
            logger.info("Received signal, shutting down")
            supervisor.stop()
            if elector is not None and not elector.is_leader:
                main_task.cancel()

        stopper = asyncio.create_task(_stop_on_signal())
        await asyncio.gather(main_task, return_exceptions=True)
        stopper.cancel()
        metrics.shutdown()

        if main_task.cancelled():
            return 0
        if main_task.exception() is not None:
            raise main_task.exception()
        # LeaderElector.run returns False once the lease is lost
        return 1 if main_task.result() is False else 0
    except Exception as e:
        logger.error(f"problem running manager: {e}", exc_info=True)
        return 1
    finally:
        if fabric is not None:
            await fabric.close()
        for server in servers:
            server.should_exit = True
        await asyncio.gather(*server_tasks, return_exceptions=True)
        for server in servers:
            server.cleanup()
        if api_client is not None:
            api_client.close()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)


def main():
    args = create_parser().parse_args()
    set_verbose(args.verbose)
    try:
        operator_config = OperatorConfig.from_env(args.config)
    except Exception as e:
        logger.error(f"unable to load operator config: {e}")
        sys.exit(1)
    if args.kubeconfig:
        operator_config.k8s.kubeconfig_path = args.kubeconfig
    sys.exit(asyncio.run(run(options_from_args(args), operator_config)))


if __name__ == "__main__":
    main()
