"""Reconcile loop driver: work queue, informer, leader election and probes."""

from epg_operator.supervisor.leader_election import LeaderElector
from epg_operator.supervisor.manager import Supervisor
from epg_operator.supervisor.work_queue import WorkQueue

__all__ = [
    "LeaderElector",
    "Supervisor",
    "WorkQueue",
]
