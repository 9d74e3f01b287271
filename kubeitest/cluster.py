"""Lifecycle helper for the cluster custom resource under test.

A :class:`ClusterUnderTest` sequences apply -> wait until ready -> test body
-> delete -> wait until the pods are gone, and derives the label selector
that finds the pods and config maps belonging to its cluster instance.

State machine::

    UNSET --apply--> APPLIED --wait_ready--> READY --delete--> DELETED
                        ^                      |
                        +-------apply----------+
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from kubeitest.client.sync import SyncKubeClient
from kubeitest.errors import ConsistencyCheckError, WaitTimeoutError
from kubeitest.models.config import DEFAULT_NODE_SELECTOR, ClusterTimeouts, LabelKeys
from kubeitest.models.resources import (
    CONFIG_MAP,
    NODE,
    POD,
    Resource,
    ResourceKind,
    creation_timestamp_of,
    labels_of,
    name_of,
)
from kubeitest.observability.logging import get_logger
from kubeitest.specs import format_label_selector, unique_instance_name


class ClusterState(StrEnum):
    UNSET = "unset"
    APPLIED = "applied"
    READY = "ready"
    DELETED = "deleted"


@dataclass
class ClusterOptions:
    """Identity of one cluster instance.

    Attributes:
        app_name: Value of the app-name label, i.e. the workload type.
        instance_name: Unique cluster name, also the instance label value.
        label_keys: Label keys used to select the cluster's objects.
    """

    app_name: str
    instance_name: str
    label_keys: LabelKeys = field(default_factory=LabelKeys)

    @classmethod
    def generate(cls, app_name: str, base_name: str | None = None, label_keys: LabelKeys | None = None) -> ClusterOptions:
        """Derive a unique, length-capped instance name from ``base_name``."""
        return cls(
            app_name=app_name,
            instance_name=unique_instance_name(base_name or app_name),
            label_keys=label_keys or LabelKeys(),
        )

    def identity_labels(self) -> dict[str, str]:
        return {
            self.label_keys.app_name: self.app_name,
            self.label_keys.instance: self.instance_name,
        }


class ClusterUnderTest:
    """Applies a cluster resource and tracks it until it is torn down.

    Use it as a context manager so the cluster is deleted even when the
    test body fails::

        options = ClusterOptions.generate("zookeeper", "simple-zk")
        with ClusterUnderTest(client, ZOOKEEPER_CLUSTER, options) as cluster:
            cluster.create_or_update(spec, expected_pod_count=3)
            ...
    """

    def __init__(
        self,
        client: SyncKubeClient,
        kind: ResourceKind,
        options: ClusterOptions,
        timeouts: ClusterTimeouts | None = None,
        node_selector: str = DEFAULT_NODE_SELECTOR,
    ) -> None:
        self.client = client
        self.kind = kind
        self.options = options
        self.timeouts = timeouts or ClusterTimeouts()
        self.node_selector = node_selector
        self.cluster: Resource | None = None
        self.state = ClusterState.UNSET
        self._delete_issued = False
        self._log = get_logger("cluster").bind(kind=kind.kind, instance=options.instance_name)

    def __enter__(self) -> ClusterUnderTest:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def apply(self, spec: str | Mapping[str, Any]) -> Resource:
        """Apply the cluster resource and pause for the grace period.

        The pause gives the operator time to react; without it a test can
        start polling before any pod has been created.
        """
        body = self.kind.coerce(spec)
        body.setdefault("metadata", {})["name"] = self.options.instance_name
        self.cluster = self.client.apply(self.kind, body)
        self.state = ClusterState.APPLIED
        self._delete_issued = False
        self._log.info("cluster_applied")
        time.sleep(self.timeouts.apply_grace_period)
        return self.cluster

    def create_or_update(self, spec: str | Mapping[str, Any], expected_pod_count: int) -> Resource:
        """Apply the cluster and wait until ``expected_pod_count`` pods are ready."""
        cluster = self.apply(spec)
        self.wait_ready(expected_pod_count)
        return cluster

    def wait_ready(self, expected_pod_count: int) -> None:
        """Poll until exactly ``expected_pod_count`` pods exist and each is Ready.

        Raises:
            WaitTimeoutError: If the count does not match within
                ``cluster_ready`` seconds, or the pods are not all Ready
                by then.  Each per-pod readiness wait gets only the time
                left until that deadline.
        """
        timeout = self.timeouts.cluster_ready
        started = time.monotonic()
        observed = 0

        while time.monotonic() - started < timeout:
            pods = self.list_pods()
            observed = len(pods)
            self._log.info("cluster_waiting_for_pods", ready=f"{observed}/{expected_pod_count}")

            if observed != expected_pod_count:
                time.sleep(self.timeouts.ready_poll_interval)
                continue

            for pod in pods:
                remaining = timeout - (time.monotonic() - started)
                if remaining <= 0:
                    raise self._not_ready(expected_pod_count, observed, f"Pod [{name_of(pod)}] not checked")
                try:
                    self.client.verify_pod_condition(pod, "Ready", timeout=remaining)
                except WaitTimeoutError as exc:
                    raise self._not_ready(expected_pod_count, observed, exc.description) from exc
            if time.monotonic() - started > timeout:
                raise self._not_ready(expected_pod_count, observed, "readiness confirmed after the deadline")
            self.state = ClusterState.READY
            self._log.info("cluster_ready", pods=observed)
            return

        raise WaitTimeoutError(
            f"[{self._describe()}] {expected_pod_count} pod(s) to start",
            timeout,
            f"{observed} pod(s)",
        )

    def delete(self) -> None:
        """Delete the cluster and wait until all of its pods are gone.

        Owned pods and commands are removed by the API server's garbage
        collector through their owner references.
        """
        if self.cluster is None:
            return
        if not self._delete_issued:
            self.client.delete(self.kind, self.cluster)
            self._delete_issued = True
            self._log.info("cluster_deleted")
        self.wait_for_pods_terminated()
        self.cluster = None
        self.state = ClusterState.DELETED

    def wait_for_pods_terminated(self) -> None:
        """Poll until no pod matches this cluster's labels.

        Pods that are still terminating count as present.
        """
        timeout = self.timeouts.pods_terminated
        started = time.monotonic()
        remaining = 0

        while time.monotonic() - started < timeout:
            pods = self.list_pods()
            remaining = len(pods)
            if not pods:
                return
            self._log.info("cluster_waiting_for_termination", remaining=remaining)
            time.sleep(self.timeouts.terminated_poll_interval)

        raise WaitTimeoutError(f"[{self._describe()}] pods to terminate", timeout, f"{remaining} pod(s)")

    def close(self) -> None:
        """Scope-exit cleanup; failures are logged, never raised."""
        try:
            self.delete()
        except Exception as exc:  # noqa: BLE001
            self._log.error("cluster_cleanup_failed", error=str(exc), exc_info=True)

    # ------------------------------------------------------------------
    # Side operations
    # ------------------------------------------------------------------

    def apply_command(self, kind: ResourceKind, spec: str | Mapping[str, Any]) -> Resource:
        """Apply a command resource (e.g. a restart) and pause for the grace period."""
        command = self.client.apply(kind, spec)
        self._log.info("command_applied", command=f"{kind.kind}/{name_of(command)}")
        time.sleep(self.timeouts.apply_grace_period)
        return command

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def selector(self, additional_labels: Mapping[str, str] | None = None) -> str:
        """Identity labels of this cluster merged with ``additional_labels``.

        The instance label is always present, so objects of other
        instances of the same app never match.
        """
        labels: dict[str, str] = {
            self.options.label_keys.instance: self.options.instance_name,
            self.options.label_keys.app_name: self.options.app_name,
        }
        if additional_labels:
            labels.update(additional_labels)
        return format_label_selector(labels)

    def list_pods(self, additional_labels: Mapping[str, str] | None = None) -> list[Resource]:
        return self.client.list_labeled(POD, self.selector(additional_labels))

    def list_config_maps(self, additional_labels: Mapping[str, str] | None = None) -> list[Resource]:
        return self.client.list_labeled(CONFIG_MAP, self.selector(additional_labels))

    def list_nodes(self, selector: str | None = None) -> list[Resource]:
        """List nodes; without a selector, nodes carrying the agent architecture label."""
        return self.client.list_labeled(NODE, selector or self.node_selector)

    # ------------------------------------------------------------------
    # Consistency checks
    # ------------------------------------------------------------------

    def check_pod_creation_timestamp(self, cutoff: datetime) -> None:
        """Fail unless every pod was created strictly after ``cutoff``.

        Useful after restart commands, where all pods must be new.
        """
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=UTC)
        for pod in self.list_pods():
            created = creation_timestamp_of(pod)
            if created is None or created <= cutoff:
                raise ConsistencyCheckError(
                    f"[{self._describe()}] Pod [{name_of(pod)}] was created at [{created}], "
                    f"not after [{cutoff}]"
                )

    def check_pod_version(self, version: str) -> None:
        """Fail unless every pod carries ``version`` in its version label."""
        key = self.options.label_keys.version
        for pod in self.list_pods():
            labels = labels_of(pod)
            if key not in labels:
                raise ConsistencyCheckError(
                    f"[{self._describe()}] Pod [{name_of(pod)}] has no version label [{key}], "
                    f"expected version [{version}]"
                )
            if labels[key] != version:
                raise ConsistencyCheckError(
                    f"[{self._describe()}] Pod [{name_of(pod)}] has version [{labels[key]}] "
                    f"but should have version [{version}]"
                )

    def _describe(self) -> str:
        return f"{self.kind.kind}/{self.options.instance_name}"

    def _not_ready(self, expected_pod_count: int, observed: int, detail: str) -> WaitTimeoutError:
        return WaitTimeoutError(
            f"[{self._describe()}] {expected_pod_count} pod(s) to be ready",
            self.timeouts.cluster_ready,
            f"{observed} pod(s); {detail}",
        )
