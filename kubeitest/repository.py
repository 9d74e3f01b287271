"""Package repository bootstrap.

Operators under test fetch their agents' packages from a ``Repository``
custom resource.  Installing it repeatedly can upset lightweight
distributions such as K3s, so the setup runs at most once per process no
matter how many tests ask for it.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any

from kubeitest.client.kube import KubeClient
from kubeitest.client.sync import SyncKubeClient
from kubeitest.models.resources import ResourceKind
from kubeitest.observability.logging import get_logger

REPOSITORY_KIND = ResourceKind.custom("Repository", "stable.stackable.de/v1", "repositories")

REPOSITORY_SPEC = """
apiVersion: stable.stackable.de/v1
kind: Repository
metadata:
  name: integration-test-repository
  namespace: default
spec:
  repo_type: StackableRepo
  properties:
    url: https://cdn.jsdelivr.net/gh/stackabletech/integration-test-repo@main/
"""

_LOCK_POLL_S: float = 0.05

_log = get_logger("repository")


def repository_crd() -> dict[str, Any]:
    """CustomResourceDefinition for :data:`REPOSITORY_KIND`."""
    kind = REPOSITORY_KIND
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": f"{kind.plural}.{kind.group}"},
        "spec": {
            "group": kind.group,
            "names": {
                "kind": kind.kind,
                "plural": kind.plural,
                "singular": kind.kind.lower(),
                "shortNames": ["repo"],
            },
            "scope": "Namespaced",
            "versions": [
                {
                    "name": kind.version,
                    "served": True,
                    "storage": True,
                    "schema": {
                        "openAPIV3Schema": {
                            "type": "object",
                            "properties": {
                                "spec": {
                                    "type": "object",
                                    "required": ["repo_type", "properties"],
                                    "properties": {
                                        "repo_type": {"type": "string", "enum": ["StackableRepo"]},
                                        "properties": {
                                            "type": "object",
                                            "additionalProperties": {"type": "string"},
                                        },
                                    },
                                }
                            },
                        }
                    },
                }
            ],
        },
    }


class RepositoryBootstrap:
    """Once-only installer for the repository CRD and object.

    ``ensure`` and ``ensure_async`` serialise on one lock; the first caller
    performs the setup and later callers return immediately.  A failed
    setup is not recorded, so the next caller tries again.
    """

    def __init__(self, spec: str = REPOSITORY_SPEC) -> None:
        self._spec = spec
        self._lock = threading.Lock()
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def ensure(self, client: SyncKubeClient) -> bool:
        """Install the repository if this process has not done so yet.

        Returns:
            True if this call performed the setup.
        """
        with self._lock:
            if self._done:
                return False
            client.apply_crd(repository_crd())
            client.apply(REPOSITORY_KIND, self._spec)
            self._done = True
        _log.info("repository_installed")
        return True

    async def ensure_async(self, client: KubeClient) -> bool:
        """Async variant of :meth:`ensure` for tests driving :class:`KubeClient`."""
        # Non-blocking attempts only: a cancelled wait never leaves the lock taken.
        while not self._lock.acquire(blocking=False):
            await asyncio.sleep(_LOCK_POLL_S)
        try:
            if self._done:
                return False
            await client.apply_crd(repository_crd())
            await client.apply(REPOSITORY_KIND, self._spec)
            self._done = True
        finally:
            self._lock.release()
        _log.info("repository_installed")
        return True


_bootstrap = RepositoryBootstrap()


def setup_repository(client: SyncKubeClient) -> bool:
    return _bootstrap.ensure(client)


async def setup_repository_async(client: KubeClient) -> bool:
    return await _bootstrap.ensure_async(client)
