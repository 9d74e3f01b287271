"""Tests for kubeitest.cluster — the cluster-under-test lifecycle."""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from kubeitest.client.sync import SyncKubeClient
from kubeitest.cluster import ClusterOptions, ClusterState, ClusterUnderTest
from kubeitest.errors import ConsistencyCheckError, WaitTimeoutError
from kubeitest.models.config import DEFAULT_NODE_SELECTOR, ClusterTimeouts
from kubeitest.models.resources import CONFIG_MAP, NODE, POD, ResourceKind

ZK_CLUSTER = ResourceKind.custom("ZookeeperCluster", "zookeeper.stackable.tech/v1alpha1")
ZK_RESTART = ResourceKind.custom("Restart", "command.zookeeper.stackable.tech/v1alpha1")

_SLEEP = "kubeitest.cluster.time.sleep"

_CLUSTER_SPEC = """
apiVersion: zookeeper.stackable.tech/v1alpha1
kind: ZookeeperCluster
metadata:
  name: placeholder
spec:
  version: 3.5.8
  servers:
    selectors:
      default:
        replicas: 3
"""

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _pod(name: str, **metadata: Any) -> dict[str, Any]:
    return {"metadata": {"name": name, **metadata}}


def _pods(count: int) -> list[dict[str, Any]]:
    return [_pod(f"zk-{i}") for i in range(count)]


def _client() -> MagicMock:
    client = MagicMock(spec=SyncKubeClient)
    client.apply.side_effect = lambda kind, body: body
    return client


def _options() -> ClusterOptions:
    return ClusterOptions(app_name="zookeeper", instance_name="simple-zk-1234abcd")


def _cluster(client: MagicMock, **timeouts: float) -> ClusterUnderTest:
    return ClusterUnderTest(client, ZK_CLUSTER, _options(), timeouts=ClusterTimeouts(**timeouts))


def _applied(client: MagicMock, **timeouts: float) -> ClusterUnderTest:
    cluster = _cluster(client, **timeouts)
    with patch(_SLEEP):
        cluster.apply(_CLUSTER_SPEC)
    return cluster


# ---------------------------------------------------------------------------
# ClusterOptions
# ---------------------------------------------------------------------------


class TestClusterOptions:
    def test_generate_uses_app_name_as_base(self) -> None:
        options = ClusterOptions.generate("zookeeper")
        assert options.instance_name.startswith("zookeeper-")

    def test_generate_caps_instance_name(self) -> None:
        options = ClusterOptions.generate("zookeeper", "z" * 120)
        assert len(options.instance_name) <= 63

    def test_identity_labels(self) -> None:
        assert _options().identity_labels() == {
            "app.kubernetes.io/name": "zookeeper",
            "app.kubernetes.io/instance": "simple-zk-1234abcd",
        }


# ---------------------------------------------------------------------------
# apply
# ---------------------------------------------------------------------------


class TestApply:
    def test_stamps_instance_name_and_pauses(self) -> None:
        client = _client()
        cluster = _cluster(client)

        with patch(_SLEEP) as sleep:
            result = cluster.apply(_CLUSTER_SPEC)

        body = client.apply.call_args.args[1]
        assert body["metadata"]["name"] == "simple-zk-1234abcd"
        assert result is cluster.cluster
        assert cluster.state is ClusterState.APPLIED
        sleep.assert_called_once_with(2.0)

    def test_caller_spec_is_not_modified(self) -> None:
        client = _client()
        spec = {"metadata": {"name": "placeholder", "labels": {"tier": "zk"}}}

        with patch(_SLEEP):
            _cluster(client).apply(spec)

        assert spec == {"metadata": {"name": "placeholder", "labels": {"tier": "zk"}}}
        assert client.apply.call_args.args[1]["metadata"]["name"] == "simple-zk-1234abcd"

    def test_apply_command_pauses(self) -> None:
        client = _client()
        cluster = _applied(client)

        with patch(_SLEEP) as sleep:
            command = cluster.apply_command(ZK_RESTART, {"metadata": {"name": "restart-1"}})

        assert command["metadata"]["name"] == "restart-1"
        client.apply.assert_called_with(ZK_RESTART, {"metadata": {"name": "restart-1"}})
        sleep.assert_called_once_with(2.0)


# ---------------------------------------------------------------------------
# wait_ready
# ---------------------------------------------------------------------------


class TestWaitReady:
    def test_polls_until_count_matches_then_checks_each_pod(self) -> None:
        client = _client()
        client.list_labeled.side_effect = [_pods(2), _pods(2), _pods(3)]
        cluster = _applied(client)

        with patch(_SLEEP) as sleep:
            cluster.wait_ready(3)

        assert client.list_labeled.call_count == 3
        assert sleep.call_count == 2
        sleep.assert_called_with(2.0)
        assert [c.args for c in client.verify_pod_condition.call_args_list] == [
            (pod, "Ready") for pod in _pods(3)
        ]
        assert cluster.state is ClusterState.READY

    def test_too_many_pods_keeps_waiting(self) -> None:
        client = _client()
        client.list_labeled.side_effect = [_pods(4), _pods(3)]
        cluster = _applied(client)

        with patch(_SLEEP):
            cluster.wait_ready(3)

        assert client.list_labeled.call_count == 2

    def test_times_out_reporting_observed_count(self) -> None:
        client = _client()
        client.list_labeled.return_value = _pods(1)
        cluster = _applied(client, cluster_ready=0.05, ready_poll_interval=0.01)

        with pytest.raises(WaitTimeoutError) as exc_info:
            cluster.wait_ready(3)

        message = str(exc_info.value)
        assert "3 pod(s) to start" in message
        assert "1 pod(s)" in message
        assert "ZookeeperCluster/simple-zk-1234abcd" in message
        client.verify_pod_condition.assert_not_called()

    def test_readiness_timeout_propagates(self) -> None:
        client = _client()
        client.list_labeled.return_value = _pods(3)
        client.verify_pod_condition.side_effect = WaitTimeoutError("Pod/zk-0 to reach the expected status", 30)
        cluster = _applied(client)

        with pytest.raises(WaitTimeoutError) as exc_info:
            cluster.wait_ready(3)

        message = str(exc_info.value)
        assert "3 pod(s) to be ready" in message
        assert "3 pod(s); Pod/zk-0 to reach the expected status" in message
        assert isinstance(exc_info.value.__cause__, WaitTimeoutError)
        assert cluster.state is ClusterState.APPLIED

    def test_readiness_waits_share_the_cluster_deadline(self) -> None:
        client = _client()
        client.list_labeled.return_value = _pods(3)
        client.verify_pod_condition.side_effect = lambda pod, condition, timeout=None: time.sleep(0.2)
        cluster = _applied(client, cluster_ready=0.3)

        started = time.monotonic()
        with pytest.raises(WaitTimeoutError, match=r"3 pod\(s\) to be ready"):
            cluster.wait_ready(3)

        assert time.monotonic() - started < 1.0
        assert client.verify_pod_condition.call_count == 2
        timeouts = [c.kwargs["timeout"] for c in client.verify_pod_condition.call_args_list]
        assert 0 < timeouts[1] < timeouts[0] <= 0.3
        assert cluster.state is ClusterState.APPLIED

    def test_slow_readiness_past_deadline_fails(self) -> None:
        client = _client()
        client.list_labeled.return_value = _pods(1)
        client.verify_pod_condition.side_effect = lambda pod, condition, timeout=None: time.sleep(0.4)
        cluster = _applied(client, cluster_ready=0.3)

        with pytest.raises(WaitTimeoutError, match="after the deadline"):
            cluster.wait_ready(1)
        assert cluster.state is ClusterState.APPLIED

    def test_create_or_update_applies_then_waits(self) -> None:
        client = _client()
        client.list_labeled.return_value = _pods(3)
        cluster = _cluster(client)

        with patch(_SLEEP):
            cluster.create_or_update(_CLUSTER_SPEC, 3)

        assert cluster.state is ClusterState.READY
        client.apply.assert_called_once()


# ---------------------------------------------------------------------------
# delete / termination
# ---------------------------------------------------------------------------


class TestDelete:
    def test_delete_without_cluster_is_noop(self) -> None:
        client = _client()
        _cluster(client).delete()
        client.delete.assert_not_called()

    def test_waits_until_no_pod_remains(self) -> None:
        client = _client()
        terminating = _pod("zk-0", deletionTimestamp="2024-01-15T10:30:00Z")
        client.list_labeled.side_effect = [_pods(2), [terminating], []]
        cluster = _applied(client)

        with patch(_SLEEP) as sleep:
            cluster.delete()

        client.delete.assert_called_once_with(ZK_CLUSTER, client.apply.call_args.args[1])
        assert client.list_labeled.call_count == 3
        sleep.assert_called_with(1.0)
        assert cluster.cluster is None
        assert cluster.state is ClusterState.DELETED

    def test_cluster_kept_until_pods_terminated(self) -> None:
        client = _client()
        client.list_labeled.return_value = _pods(1)
        cluster = _applied(client, pods_terminated=0.05, terminated_poll_interval=0.01)

        with pytest.raises(WaitTimeoutError, match="pods to terminate"):
            cluster.delete()

        assert cluster.cluster is not None
        assert cluster.state is ClusterState.APPLIED

    def test_retry_does_not_delete_twice(self) -> None:
        client = _client()
        client.list_labeled.return_value = _pods(1)
        cluster = _applied(client, pods_terminated=0.02, terminated_poll_interval=0.01)
        with pytest.raises(WaitTimeoutError):
            cluster.delete()

        client.list_labeled.return_value = []
        cluster.delete()

        client.delete.assert_called_once()
        assert cluster.state is ClusterState.DELETED

    def test_close_swallows_errors(self) -> None:
        client = _client()
        client.delete.side_effect = RuntimeError("api down")
        cluster = _applied(client)
        cluster.close()

    def test_context_manager_deletes_on_failure(self) -> None:
        client = _client()
        client.list_labeled.return_value = []

        with pytest.raises(AssertionError), patch(_SLEEP):
            with _cluster(client) as cluster:
                cluster.apply(_CLUSTER_SPEC)
                raise AssertionError("test body failed")

        client.delete.assert_called_once()
        assert cluster.state is ClusterState.DELETED

    def test_second_close_is_noop(self) -> None:
        client = _client()
        client.list_labeled.return_value = []
        cluster = _applied(client)
        cluster.close()
        cluster.close()
        client.delete.assert_called_once()


# ---------------------------------------------------------------------------
# Selectors and listings
# ---------------------------------------------------------------------------


class TestSelectors:
    def test_instance_label_present_before_apply(self) -> None:
        assert _cluster(_client()).selector() == (
            "app.kubernetes.io/instance=simple-zk-1234abcd,app.kubernetes.io/name=zookeeper"
        )

    def test_instance_label_present_after_delete(self) -> None:
        client = _client()
        client.list_labeled.return_value = []
        cluster = _applied(client)
        cluster.delete()

        assert cluster.cluster is None
        assert "app.kubernetes.io/instance=simple-zk-1234abcd" in cluster.selector()

    def test_after_apply_instance_first(self) -> None:
        cluster = _applied(_client())
        assert cluster.selector() == (
            "app.kubernetes.io/instance=simple-zk-1234abcd,app.kubernetes.io/name=zookeeper"
        )

    def test_additional_labels_are_appended(self) -> None:
        cluster = _applied(_client())
        selector = cluster.selector({"app.kubernetes.io/component": "server"})
        assert selector.endswith(",app.kubernetes.io/component=server")

    def test_list_config_maps_uses_selector(self) -> None:
        client = _client()
        client.list_labeled.return_value = []
        cluster = _applied(client)
        cluster.list_config_maps({"role": "config"})
        client.list_labeled.assert_called_with(
            CONFIG_MAP,
            "app.kubernetes.io/instance=simple-zk-1234abcd,app.kubernetes.io/name=zookeeper,role=config",
        )

    def test_list_pods_uses_pod_kind(self) -> None:
        client = _client()
        client.list_labeled.return_value = []
        _applied(client).list_pods()
        assert client.list_labeled.call_args.args[0] is POD

    def test_list_nodes_default_selector(self) -> None:
        client = _client()
        _cluster(client).list_nodes()
        client.list_labeled.assert_called_once_with(NODE, DEFAULT_NODE_SELECTOR)

    def test_list_nodes_explicit_selector(self) -> None:
        client = _client()
        _cluster(client).list_nodes("role=agent")
        client.list_labeled.assert_called_once_with(NODE, "role=agent")


# ---------------------------------------------------------------------------
# Consistency checks
# ---------------------------------------------------------------------------


class TestConsistencyChecks:
    def test_creation_timestamps_after_cutoff(self) -> None:
        client = _client()
        client.list_labeled.return_value = [
            _pod("zk-0", creationTimestamp="2024-01-15T10:30:05Z"),
            _pod("zk-1", creationTimestamp="2024-01-15T10:31:00Z"),
        ]
        cluster = _applied(client)
        cluster.check_pod_creation_timestamp(datetime(2024, 1, 15, 10, 30, tzinfo=UTC))

    def test_creation_at_cutoff_fails(self) -> None:
        client = _client()
        client.list_labeled.return_value = [_pod("zk-0", creationTimestamp="2024-01-15T10:30:00Z")]
        cluster = _applied(client)
        with pytest.raises(ConsistencyCheckError, match="zk-0"):
            cluster.check_pod_creation_timestamp(datetime(2024, 1, 15, 10, 30, tzinfo=UTC))

    def test_naive_cutoff_is_utc(self) -> None:
        client = _client()
        client.list_labeled.return_value = [_pod("zk-0", creationTimestamp="2024-01-15T10:29:00Z")]
        cluster = _applied(client)
        with pytest.raises(ConsistencyCheckError):
            cluster.check_pod_creation_timestamp(datetime(2024, 1, 15, 10, 30))

    def test_version_label_matches(self) -> None:
        client = _client()
        client.list_labeled.return_value = [_pod("zk-0", labels={"app.kubernetes.io/version": "3.5.8"})]
        _applied(client).check_pod_version("3.5.8")

    def test_missing_version_label_fails(self) -> None:
        client = _client()
        client.list_labeled.return_value = [_pod("zk-0", labels={})]
        with pytest.raises(ConsistencyCheckError, match="no version label"):
            _applied(client).check_pod_version("3.5.8")

    def test_wrong_version_fails(self) -> None:
        client = _client()
        client.list_labeled.return_value = [_pod("zk-0", labels={"app.kubernetes.io/version": "3.4.14"})]
        with pytest.raises(AssertionError, match=r"has version \[3.4.14\]"):
            _applied(client).check_pod_version("3.5.8")
