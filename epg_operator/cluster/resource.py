"""Helpers over EpgConf objects as returned by CustomObjectsApi (plain dicts)."""

import json
from typing import Any

from epg_operator.cluster.constants import K8sConstants
from epg_operator.fabric.constants import epg_name


def object_key(obj: dict[str, Any]) -> str:
    metadata = obj.get("metadata", {})
    return f"{metadata.get('namespace')}/{metadata.get('name')}"


def split_key(key: str) -> tuple[str, str]:
    namespace, _, name = key.partition("/")
    return namespace, name


def is_being_deleted(obj: dict[str, Any]) -> bool:
    return bool(obj.get("metadata", {}).get("deletionTimestamp"))


def has_finalizer(obj: dict[str, Any], finalizer: str = K8sConstants.FINALIZER) -> bool:
    return finalizer in (obj.get("metadata", {}).get("finalizers") or [])


def add_finalizer(obj: dict[str, Any], finalizer: str = K8sConstants.FINALIZER) -> bool:
    """Append the finalizer, returning False when it was already present."""
    finalizers = obj.setdefault("metadata", {}).get("finalizers") or []
    if finalizer in finalizers:
        return False
    obj["metadata"]["finalizers"] = [*finalizers, finalizer]
    return True


def remove_finalizer(obj: dict[str, Any], finalizer: str = K8sConstants.FINALIZER) -> bool:
    finalizers = obj.setdefault("metadata", {}).get("finalizers") or []
    if finalizer not in finalizers:
        return False
    obj["metadata"]["finalizers"] = [f for f in finalizers if f != finalizer]
    return True


def set_state(obj: dict[str, Any], state: str) -> None:
    status = obj.get("status") or {}
    status["state"] = state
    obj["status"] = status


def endpoint_group_annotation(tenant: str, app: str, namespace: str) -> str:
    """Compact JSON with keys in the order the opflex agent documents."""
    return json.dumps(
        {"tenant": tenant, "app-profile": app, "name": epg_name(namespace)},
        separators=(",", ":"),
    )
