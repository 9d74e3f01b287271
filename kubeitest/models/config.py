"""Pydantic configuration models for kubeitest.

All durations are seconds.  Every model validates on assignment so that
tests tweaking a timeout at runtime (``client.timeouts.create = 5``) get
the same checks as values loaded from the environment.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# Legacy fallback used when a test lists nodes without a selector.
DEFAULT_NODE_SELECTOR = "kubernetes.io/arch=stackable-linux"


class OperationTimeouts(BaseModel):
    """Deadlines of the blocking Resource Client operations."""

    model_config = ConfigDict(validate_assignment=True)

    apply_crd: float = Field(default=30.0, gt=0.0)
    create: float = Field(default=10.0, gt=0.0)
    delete: float = Field(default=10.0, gt=0.0)
    get_annotation: float = Field(default=10.0, gt=0.0)
    verify_status: float = Field(default=30.0, gt=0.0)


class ClusterTimeouts(BaseModel):
    """Deadlines and poll cadence of the Test Cluster Controller."""

    model_config = ConfigDict(validate_assignment=True)

    cluster_ready: float = Field(default=300.0, gt=0.0)
    pods_terminated: float = Field(default=120.0, gt=0.0)
    apply_grace_period: float = Field(
        default=2.0,
        ge=0.0,
        description="Pause after applying a resource so the operator can start reconciling",
    )
    ready_poll_interval: float = Field(default=2.0, ge=0.0)
    terminated_poll_interval: float = Field(default=1.0, ge=0.0)


class LabelKeys(BaseModel):
    """Label keys used to select the pods and config maps of a cluster."""

    model_config = ConfigDict(validate_assignment=True)

    app_name: str = Field(default="app.kubernetes.io/name", min_length=1)
    instance: str = Field(default="app.kubernetes.io/instance", min_length=1)
    version: str = Field(default="app.kubernetes.io/version", min_length=1)


class LogConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error"] = "info"
    format: Literal["console", "json"] = "console"


class KubeITestConfig(BaseModel):
    """Root configuration object returned by :func:`kubeitest.config.load_config`."""

    model_config = ConfigDict(validate_assignment=True)

    namespace: str = Field(default="default", min_length=1)
    kubeconfig: str | None = None
    context: str | None = None
    field_manager: str = Field(default="kubeitest", min_length=1)
    node_selector: str = DEFAULT_NODE_SELECTOR
    timeouts: OperationTimeouts = Field(default_factory=OperationTimeouts)
    cluster_timeouts: ClusterTimeouts = Field(default_factory=ClusterTimeouts)
    labels: LabelKeys = Field(default_factory=LabelKeys)
    log: LogConfig = Field(default_factory=LogConfig)
