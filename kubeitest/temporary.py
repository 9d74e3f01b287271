"""Resource which is deleted when its scope ends."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from kubeitest.client.sync import SyncKubeClient
from kubeitest.models.resources import Resource, ResourceKind, describe, name_of
from kubeitest.observability.logging import get_logger

_log = get_logger("temporary_resource")


class TemporaryResource:
    """A resource created on construction and deleted exactly once on scope exit.

    The delete runs whether the ``with`` block finishes or raises, so a
    failing test leaves nothing behind::

        with TemporaryResource(client, POD, POD_SPEC) as pod:
            client.verify_pod_condition(pod.resource, "Ready")
            pod.update()
            assert pod["status"]["phase"] == "Running"
    """

    def __init__(self, client: SyncKubeClient, kind: ResourceKind, spec: str | Mapping[str, Any]) -> None:
        self._client = client
        self._kind = kind
        self._resource = client.create(kind, spec)
        self._deleted = False

    @property
    def kind(self) -> ResourceKind:
        return self._kind

    @property
    def resource(self) -> Resource:
        return self._resource

    @property
    def name(self) -> str:
        return name_of(self._resource)

    def __getitem__(self, key: str) -> Any:
        return self._resource[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self._resource.get(key, default)

    def update(self) -> Resource:
        """Replace the held object with its current state, including status."""
        self._resource = self._client.get_status(self._kind, self._resource)
        return self._resource

    def delete(self) -> None:
        """Delete the remote object; later calls are no-ops."""
        if self._deleted:
            return
        self._deleted = True
        self._client.delete(self._kind, self._resource)

    def __enter__(self) -> TemporaryResource:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        try:
            self.delete()
        except Exception as exc:  # noqa: BLE001
            _log.error(
                "temporary_resource_cleanup_failed",
                resource=describe(self._kind, self._resource),
                error=str(exc),
                exc_info=True,
            )

    def __repr__(self) -> str:
        return f"TemporaryResource({describe(self._kind, self._resource)})"
