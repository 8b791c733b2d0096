"""Cluster API access and EpgConf resource helpers."""

from epg_operator.cluster.api_client import ClusterClient, load_api_client
from epg_operator.cluster.constants import K8sConstants

__all__ = [
    "ClusterClient",
    "K8sConstants",
    "load_api_client",
]
