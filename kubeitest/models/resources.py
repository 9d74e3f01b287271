"""Resource kinds and accessors for JSON-shaped Kubernetes objects.

Every managed object is a plain ``dict`` in its wire form (camelCase keys,
``metadata``/``spec``/``status``).  A :class:`ResourceKind` describes how to
address a type on the API server and supplies the name/decode/encode
capabilities the clients need.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from kubeitest.specs import from_yaml, to_yaml

Resource = dict[str, Any]

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass(frozen=True)
class ResourceKind:
    """Capability descriptor for one Kubernetes resource type.

    Attributes:
        kind: The ``kind`` field, e.g. ``"Pod"``.
        api_version: ``group/version`` or ``v1`` for the core group.
        plural: The REST resource name, e.g. ``"pods"``.
        namespaced: Whether objects live in a namespace.
        has_status: Whether the type serves a ``/status`` subresource.
    """

    kind: str
    api_version: str
    plural: str
    namespaced: bool = True
    has_status: bool = True

    @classmethod
    def custom(
        cls,
        kind: str,
        api_version: str,
        plural: str | None = None,
        *,
        namespaced: bool = True,
        has_status: bool = True,
    ) -> ResourceKind:
        """Describe a custom resource; ``plural`` defaults to ``kind.lower() + "s"``."""
        return cls(
            kind=kind,
            api_version=api_version,
            plural=plural or f"{kind.lower()}s",
            namespaced=namespaced,
            has_status=has_status,
        )

    @property
    def group(self) -> str:
        group, _, _version = self.api_version.rpartition("/")
        return group

    @property
    def version(self) -> str:
        return self.api_version.rpartition("/")[2]

    @property
    def snake_name(self) -> str:
        """``ConfigMap`` -> ``config_map``; matches the generated API method names."""
        return _CAMEL_BOUNDARY.sub("_", self.kind).lower()

    def name_of(self, obj: Mapping[str, Any]) -> str:
        return name_of(obj)

    def decode(self, text: str) -> Resource:
        """Decode a YAML spec and fill in ``apiVersion``/``kind`` when omitted."""
        obj = from_yaml(text)
        obj.setdefault("apiVersion", self.api_version)
        obj.setdefault("kind", self.kind)
        return obj

    def encode(self, obj: Mapping[str, Any]) -> str:
        return to_yaml(obj)

    def coerce(self, spec: str | Mapping[str, Any]) -> Resource:
        """Accept either YAML text or an already decoded mapping."""
        if isinstance(spec, str):
            return self.decode(spec)
        obj = copy.deepcopy(dict(spec))
        obj.setdefault("apiVersion", self.api_version)
        obj.setdefault("kind", self.kind)
        return obj

    def __str__(self) -> str:
        return self.kind


POD = ResourceKind("Pod", "v1", "pods")
NODE = ResourceKind("Node", "v1", "nodes", namespaced=False)
CONFIG_MAP = ResourceKind("ConfigMap", "v1", "configmaps", has_status=False)
CUSTOM_RESOURCE_DEFINITION = ResourceKind(
    "CustomResourceDefinition",
    "apiextensions.k8s.io/v1",
    "customresourcedefinitions",
    namespaced=False,
)


# ---------------------------------------------------------------------------
# Accessors
# ---------------------------------------------------------------------------


def _metadata(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, Mapping) else {}


def name_of(obj: Mapping[str, Any]) -> str:
    return str(_metadata(obj).get("name") or "")


def namespace_of(obj: Mapping[str, Any]) -> str | None:
    namespace = _metadata(obj).get("namespace")
    return str(namespace) if namespace else None


def labels_of(obj: Mapping[str, Any]) -> dict[str, str]:
    return dict(_metadata(obj).get("labels") or {})


def annotations_of(obj: Mapping[str, Any]) -> dict[str, str]:
    return dict(_metadata(obj).get("annotations") or {})


def resource_version_of(obj: Mapping[str, Any]) -> str:
    return str(_metadata(obj).get("resourceVersion") or "")


def creation_timestamp_of(obj: Mapping[str, Any]) -> datetime | None:
    """Parse ``metadata.creationTimestamp``; naive values are taken as UTC."""
    raw = _metadata(obj).get("creationTimestamp")
    if raw is None:
        return None
    if isinstance(raw, datetime):
        value = raw
    else:
        value = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


def conditions_of(obj: Mapping[str, Any]) -> list[dict[str, Any]]:
    status = obj.get("status")
    if not isinstance(status, Mapping):
        return []
    return list(status.get("conditions") or [])


def has_condition(obj: Mapping[str, Any], condition_type: str) -> bool:
    """True if the object reports ``condition_type`` with status ``"True"``."""
    return any(
        condition.get("type") == condition_type and condition.get("status") == "True"
        for condition in conditions_of(obj)
    )


# Aliases kept for readability at call sites dealing with a specific kind.
pod_conditions = conditions_of
node_conditions = conditions_of
crd_conditions = conditions_of


def node_taints(node: Mapping[str, Any]) -> list[dict[str, Any]]:
    spec = node.get("spec")
    if not isinstance(spec, Mapping):
        return []
    return list(spec.get("taints") or [])


def allocatable_pods(node: Mapping[str, Any]) -> int:
    """Number of pods the node can host, 0 when unknown."""
    status = node.get("status")
    if not isinstance(status, Mapping):
        return 0
    quantity = (status.get("allocatable") or {}).get("pods")
    try:
        return int(quantity)
    except (TypeError, ValueError):
        return 0


def describe(kind: ResourceKind, obj: Mapping[str, Any] | str) -> str:
    """``Kind/name`` for log lines and error messages."""
    name = obj if isinstance(obj, str) else name_of(obj)
    return f"{kind.kind}/{name or '<unnamed>'}"
