"""Resource clients: the async :class:`KubeClient` and its blocking facade."""

from kubeitest.client.kube import KubeClient, LogParams
from kubeitest.client.sync import SyncKubeClient

__all__ = ["KubeClient", "LogParams", "SyncKubeClient"]
