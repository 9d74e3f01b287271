"""Blocking facade over :class:`kubeitest.client.kube.KubeClient`.

Test code calls plain functions; the facade owns one ``asyncio.Runner`` for
its whole lifetime and drives every coroutine through it.  A lock keeps
calls from different threads strictly one at a time, in the order they
acquire it.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable, Coroutine, Mapping
from typing import Any, TypeVar

from kubeitest.client.kube import KubeClient, LogParams
from kubeitest.models.config import KubeITestConfig, OperationTimeouts
from kubeitest.models.resources import Resource, ResourceKind

_T = TypeVar("_T")


class SyncKubeClient:
    """Synchronous counterpart of :class:`KubeClient`.

    Usage::

        with SyncKubeClient(load_config()) as client:
            pod = client.create(POD, POD_SPEC)
            client.verify_pod_condition(pod, "Ready")
    """

    def __init__(
        self,
        config: KubeITestConfig | None = None,
        *,
        kube_client: KubeClient | None = None,
    ) -> None:
        """Connect to the cluster, or wrap an already constructed async client.

        Args:
            config: Connection settings; defaults to ``KubeITestConfig()``.
            kube_client: Async client to drive instead of connecting.
        """
        self._runner = asyncio.Runner()
        self._lock = threading.Lock()
        self._closed = False
        if kube_client is None:
            kube_client = self._runner.run(KubeClient.connect(config))
        self._client = kube_client

    @property
    def kube_client(self) -> KubeClient:
        return self._client

    @property
    def namespace(self) -> str:
        return self._client.namespace

    @property
    def timeouts(self) -> OperationTimeouts:
        """Mutable operation timeouts, shared with the async client."""
        return self._client.timeouts

    def _run(self, coro: Coroutine[Any, Any, _T]) -> _T:
        with self._lock:
            if self._closed:
                coro.close()
                raise RuntimeError("SyncKubeClient is closed")
            return self._runner.run(coro)

    def close(self) -> None:
        """Close the API session and the event loop; safe to call twice."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._runner.run(self._client.close())
            finally:
                self._runner.close()

    def __enter__(self) -> SyncKubeClient:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Blocking verbs
    # ------------------------------------------------------------------

    def list_labeled(self, kind: ResourceKind, label_selector: str) -> list[Resource]:
        return self._run(self._client.list_labeled(kind, label_selector))

    def apply_crd(self, crd: str | Mapping[str, Any]) -> None:
        self._run(self._client.apply_crd(crd))

    def find(self, kind: ResourceKind, name: str) -> Resource | None:
        return self._run(self._client.find(kind, name))

    def find_namespaced(self, kind: ResourceKind, name: str) -> Resource | None:
        return self._run(self._client.find_namespaced(kind, name))

    def apply(self, kind: ResourceKind, spec: str | Mapping[str, Any]) -> Resource:
        return self._run(self._client.apply(kind, spec))

    def create(self, kind: ResourceKind, spec: str | Mapping[str, Any]) -> Resource:
        return self._run(self._client.create(kind, spec))

    def delete(self, kind: ResourceKind, resource: Mapping[str, Any]) -> None:
        self._run(self._client.delete(kind, resource))

    def get_annotation(self, kind: ResourceKind, resource: Mapping[str, Any], key: str) -> str:
        return self._run(self._client.get_annotation(kind, resource, key))

    def verify_pod_condition(
        self,
        pod: Mapping[str, Any],
        condition_type: str,
        timeout: float | None = None,
    ) -> Resource:
        return self._run(self._client.verify_pod_condition(pod, condition_type, timeout))

    def verify_status(
        self,
        kind: ResourceKind,
        resource: Mapping[str, Any],
        predicate: Callable[[Resource], bool],
        timeout: float | None = None,
    ) -> Resource:
        return self._run(self._client.verify_status(kind, resource, predicate, timeout))

    def get_status(self, kind: ResourceKind, resource: Mapping[str, Any]) -> Resource:
        return self._run(self._client.get_status(kind, resource))

    def get_logs(self, pod: Mapping[str, Any], params: LogParams | None = None) -> list[str]:
        return self._run(self._client.get_logs(pod, params))
