"""Load kubeitest configuration from ``KUBEITEST_*`` environment variables.

Unset variables fall back to the model defaults.  Values that fail
validation raise ``ValueError`` naming the offending variable.
"""

from __future__ import annotations

import os
from typing import Any

from pydantic import ValidationError

from kubeitest.models.config import KubeITestConfig

_PREFIX = "KUBEITEST_"

# env var suffix -> (section or None, field)
_ENV_FIELDS: dict[str, tuple[str | None, str]] = {
    "NAMESPACE": (None, "namespace"),
    "KUBECONFIG": (None, "kubeconfig"),
    "CONTEXT": (None, "context"),
    "FIELD_MANAGER": (None, "field_manager"),
    "NODE_SELECTOR": (None, "node_selector"),
    "TIMEOUT_APPLY_CRD": ("timeouts", "apply_crd"),
    "TIMEOUT_CREATE": ("timeouts", "create"),
    "TIMEOUT_DELETE": ("timeouts", "delete"),
    "TIMEOUT_GET_ANNOTATION": ("timeouts", "get_annotation"),
    "TIMEOUT_VERIFY_STATUS": ("timeouts", "verify_status"),
    "CLUSTER_READY_TIMEOUT": ("cluster_timeouts", "cluster_ready"),
    "PODS_TERMINATED_TIMEOUT": ("cluster_timeouts", "pods_terminated"),
    "APPLY_GRACE_PERIOD": ("cluster_timeouts", "apply_grace_period"),
    "READY_POLL_INTERVAL": ("cluster_timeouts", "ready_poll_interval"),
    "TERMINATED_POLL_INTERVAL": ("cluster_timeouts", "terminated_poll_interval"),
    "APP_NAME_LABEL": ("labels", "app_name"),
    "INSTANCE_LABEL": ("labels", "instance"),
    "VERSION_LABEL": ("labels", "version"),
    "LOG_LEVEL": ("log", "level"),
    "LOG_FORMAT": ("log", "format"),
}


def load_config() -> KubeITestConfig:
    """Build a :class:`KubeITestConfig` from the current environment."""
    data: dict[str, Any] = {}
    for suffix, (section, field_name) in _ENV_FIELDS.items():
        raw = os.environ.get(_PREFIX + suffix)
        if raw is None or raw.strip() == "":
            continue
        value = raw.strip()
        if section == "log":
            value = value.lower()
        target = data if section is None else data.setdefault(section, {})
        target[field_name] = value

    try:
        return KubeITestConfig.model_validate(data)
    except ValidationError as exc:
        names = ", ".join(_env_name(err["loc"]) for err in exc.errors())
        raise ValueError(f"Invalid kubeitest configuration in {names}: {exc}") from exc


def _env_name(loc: tuple[Any, ...]) -> str:
    """Map a pydantic error location back to the environment variable name."""
    path = tuple(str(part) for part in loc[:2])
    for suffix, (section, field_name) in _ENV_FIELDS.items():
        expected = (field_name,) if section is None else (section, field_name)
        if path[: len(expected)] == expected:
            return _PREFIX + suffix
    return ".".join(path)
