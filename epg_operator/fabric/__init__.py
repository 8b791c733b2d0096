"""Fabric controller adapters."""

from epg_operator.fabric.abstract import AbstractFabricClient
from epg_operator.fabric.apic import ApicClient
from epg_operator.fabric.mock import MockFabricClient

__all__ = [
    "AbstractFabricClient",
    "ApicClient",
    "MockFabricClient",
]
