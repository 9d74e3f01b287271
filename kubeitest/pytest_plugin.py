"""pytest fixtures for operator integration tests.

Registered through the ``pytest11`` entry point, so installing kubeitest is
enough to make these fixtures available:

- ``kubeitest_config``: configuration loaded from ``KUBEITEST_*`` variables
- ``kube_client``: one :class:`SyncKubeClient` for the whole session
- ``package_repository``: installs the package repository once per session
- ``temporary_resources``: factory for resources deleted at test teardown
- ``cluster_factory``: factory for :class:`ClusterUnderTest` instances
  torn down at test teardown
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from typing import Any

import pytest

from kubeitest.client.sync import SyncKubeClient
from kubeitest.cluster import ClusterOptions, ClusterUnderTest
from kubeitest.config import load_config
from kubeitest.models.config import KubeITestConfig
from kubeitest.models.resources import ResourceKind
from kubeitest.observability.logging import setup_logging
from kubeitest.repository import setup_repository
from kubeitest.temporary import TemporaryResource

TemporaryFactory = Callable[..., TemporaryResource]
ClusterFactory = Callable[..., ClusterUnderTest]


@pytest.fixture(scope="session")
def kubeitest_config() -> KubeITestConfig:
    config = load_config()
    setup_logging(config.log.level, config.log.format)
    return config


@pytest.fixture(scope="session")
def kube_client(kubeitest_config: KubeITestConfig) -> Iterator[SyncKubeClient]:
    with SyncKubeClient(kubeitest_config) as client:
        yield client


@pytest.fixture(scope="session")
def package_repository(kube_client: SyncKubeClient) -> None:
    setup_repository(kube_client)


@pytest.fixture
def temporary_resources(kube_client: SyncKubeClient) -> Iterator[TemporaryFactory]:
    """Create resources that are deleted, newest first, when the test ends."""
    created: list[TemporaryResource] = []

    def factory(kind: ResourceKind, spec: str | Mapping[str, Any]) -> TemporaryResource:
        resource = TemporaryResource(kube_client, kind, spec)
        created.append(resource)
        return resource

    yield factory

    for resource in reversed(created):
        resource.__exit__(None, None, None)


@pytest.fixture
def cluster_factory(
    kube_client: SyncKubeClient,
    kubeitest_config: KubeITestConfig,
) -> Iterator[ClusterFactory]:
    """Build clusters with unique instance names; each is deleted at teardown."""
    clusters: list[ClusterUnderTest] = []

    def factory(kind: ResourceKind, app_name: str, base_name: str | None = None) -> ClusterUnderTest:
        options = ClusterOptions.generate(app_name, base_name, kubeitest_config.labels)
        cluster = ClusterUnderTest(
            kube_client,
            kind,
            options,
            timeouts=kubeitest_config.cluster_timeouts.model_copy(),
            node_selector=kubeitest_config.node_selector,
        )
        clusters.append(cluster)
        return cluster

    yield factory

    for cluster in reversed(clusters):
        cluster.close()
