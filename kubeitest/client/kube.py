"""Asynchronous Kubernetes client for integration tests.

Wraps a kubernetes_asyncio ``ApiClient`` with verbs that wait for the
resulting state change within per-operation deadlines:

- ``create`` waits until the new object is observed
- ``delete`` waits until the deletion is observed
- ``get_annotation`` waits until an annotation appears
- ``verify_status`` waits until the status satisfies a predicate
- ``apply_crd`` waits until a CRD's names are accepted

Every waiting verb subscribes before it mutates: a name-scoped list records
the collection ``resourceVersion``, the mutation is issued, and the watch
then resumes from the recorded version so no intermediate event is lost.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from kubernetes_asyncio import watch
from kubernetes_asyncio.client import ApiClient
from kubernetes_asyncio.client.exceptions import ApiException

from kubeitest.client.api import KindApi
from kubeitest.errors import WaitTimeoutError
from kubeitest.models.config import KubeITestConfig, OperationTimeouts
from kubeitest.models.resources import (
    CUSTOM_RESOURCE_DEFINITION,
    POD,
    Resource,
    ResourceKind,
    annotations_of,
    conditions_of,
    describe,
    has_condition,
    name_of,
    namespace_of,
    resource_version_of,
)
from kubeitest.observability.logging import get_logger

# Event matcher: (event_type, object) -> object to return, or None to keep waiting
EventMatcher = Callable[[str, Resource], Resource | None]

_REOPEN_DELAY_S: float = 0.2


@dataclass
class LogParams:
    """Options forwarded to ``read_namespaced_pod_log``."""

    container: str | None = None
    follow: bool = False
    previous: bool = False
    since_seconds: int | None = None
    tail_lines: int | None = None
    timestamps: bool = False
    limit_bytes: int | None = None

    def as_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "follow": self.follow,
            "previous": self.previous,
            "timestamps": self.timestamps,
        }
        for key in ("container", "since_seconds", "tail_lines", "limit_bytes"):
            value = getattr(self, key)
            if value is not None:
                kwargs[key] = value
        return kwargs


@dataclass
class _Subscription:
    """A name-scoped watch position opened before a mutation."""

    api: KindApi
    name: str
    namespace: str | None
    resource_version: str
    current: Resource | None = None
    last_seen: Resource | None = field(default=None, repr=False)

    @property
    def field_selector(self) -> str:
        return f"metadata.name={self.name}"


class KubeClient:
    """Async client whose verbs await the expected state change.

    Lifecycle::

        client = await KubeClient.connect(load_config())
        pod = await client.create(POD, spec)
        await client.verify_pod_condition(pod, "Ready")
        await client.close()
    """

    def __init__(
        self,
        api_client: Any,
        namespace: str = "default",
        timeouts: OperationTimeouts | None = None,
        field_manager: str = "kubeitest",
    ) -> None:
        self._api_client = api_client
        self.namespace = namespace
        self.timeouts = timeouts or OperationTimeouts()
        self.field_manager = field_manager
        self._apis: dict[ResourceKind, KindApi] = {}
        self._log = get_logger("kube_client")

    @classmethod
    async def connect(cls, config: KubeITestConfig | None = None) -> KubeClient:
        """Load cluster credentials and open an API session.

        An explicit kubeconfig path or context wins; otherwise the in-cluster
        service account is tried before falling back to the default
        kubeconfig.
        """
        import kubernetes_asyncio.config as k8s_config

        config = config or KubeITestConfig()
        log = get_logger("kube_client")
        if config.kubeconfig or config.context:
            await k8s_config.load_kube_config(config_file=config.kubeconfig, context=config.context)
            log.info("k8s_client_kubeconfig", path=config.kubeconfig, context=config.context)
        else:
            try:
                # load_incluster_config() is synchronous in kubernetes-asyncio
                k8s_config.load_incluster_config()  # type: ignore[no-untyped-call]
                log.info("k8s_client_incluster")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                log.info("k8s_client_kubeconfig")

        return cls(
            ApiClient(),
            namespace=config.namespace,
            timeouts=config.timeouts.model_copy(),
            field_manager=config.field_manager,
        )

    async def close(self) -> None:
        await self._api_client.close()

    def api(self, kind: ResourceKind) -> KindApi:
        """Return the (cached) verb dispatcher for ``kind``."""
        api = self._apis.get(kind)
        if api is None:
            api = KindApi(self._api_client, kind)
            self._apis[kind] = api
        return api

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def list_labeled(self, kind: ResourceKind, label_selector: str) -> list[Resource]:
        """List objects of ``kind`` in all namespaces matching the selector.

        The selector supports ``=``, ``==`` and ``!=`` and can be comma
        separated: ``key1=value1,key2=value2``.
        """
        listing = await self.api(kind).list(namespace=None, label_selector=label_selector)
        return list(listing.get("items") or [])

    async def find(self, kind: ResourceKind, name: str) -> Resource | None:
        """Look up a cluster-scoped object (or a namespaced one in the client namespace)."""
        namespace = self.namespace if kind.namespaced else None
        return await self._find(kind, name, namespace)

    async def find_namespaced(self, kind: ResourceKind, name: str) -> Resource | None:
        """Look up an object in the client namespace."""
        return await self._find(kind, name, self.namespace)

    async def _find(self, kind: ResourceKind, name: str, namespace: str | None) -> Resource | None:
        try:
            return await self.api(kind).read(name, namespace)
        except ApiException as exc:
            if exc.status == 404:
                return None
            raise

    async def get_status(self, kind: ResourceKind, resource: Mapping[str, Any]) -> Resource:
        """Return ``resource`` re-read from the server including its status."""
        return await self.api(kind).read_status(name_of(resource), self._namespace_for(kind, resource))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def apply(self, kind: ResourceKind, spec: str | Mapping[str, Any]) -> Resource:
        """Server-side apply the given YAML (or dict) spec and return the result."""
        body = kind.coerce(spec)
        namespace = self._namespace_for(kind, body)
        result = await self.api(kind).apply(body, namespace, self.field_manager)
        self._log.debug("resource_applied", resource=describe(kind, body), namespace=namespace)
        return result

    async def create(self, kind: ResourceKind, spec: str | Mapping[str, Any]) -> Resource:
        """Create the object and wait until its creation is observed."""
        body = kind.coerce(spec)
        namespace = self._namespace_for(kind, body)
        timeout = self.timeouts.create
        subscription = await self._subscribe(kind, name_of(body), namespace)

        await self.api(kind).create(body, namespace)

        def match(event_type: str, obj: Resource) -> Resource | None:
            return obj if event_type == "ADDED" else None

        observed = await self._await_event(subscription, match, timeout)
        if observed is None:
            raise WaitTimeoutError(f"creation of {describe(kind, body)}", timeout)
        self._log.debug("resource_created", resource=describe(kind, body), namespace=namespace)
        return observed

    async def delete(self, kind: ResourceKind, resource: Mapping[str, Any]) -> None:
        """Delete the object and wait until the deletion is observed.

        Returns at once when the server reports the object already gone.
        """
        name = name_of(resource)
        namespace = self._namespace_for(kind, resource)
        timeout = self.timeouts.delete
        subscription = await self._subscribe(kind, name, namespace)

        result = await self.api(kind).delete(name, namespace)
        if result.get("kind") == "Status":
            self._log.debug("resource_deleted", resource=describe(kind, name), namespace=namespace)
            return

        def match(event_type: str, obj: Resource) -> Resource | None:
            return obj if event_type == "DELETED" else None

        if await self._await_event(subscription, match, timeout) is None:
            raise WaitTimeoutError(f"deletion of {describe(kind, name)}", timeout)
        self._log.debug("resource_deleted", resource=describe(kind, name), namespace=namespace)

    async def apply_crd(self, crd: str | Mapping[str, Any]) -> None:
        """Apply a CustomResourceDefinition and wait until its names are accepted.

        A CRD that could already be read before the apply is assumed to be
        established and the call returns right after the apply.
        """
        kind = CUSTOM_RESOURCE_DEFINITION
        body = kind.coerce(crd)
        name = name_of(body)
        timeout = self.timeouts.apply_crd
        subscription = await self._subscribe(kind, name, None)

        applied = await self.api(kind).apply(body, None, self.field_manager)
        if subscription.current is not None or has_condition(applied, "NamesAccepted"):
            return

        def match(event_type: str, obj: Resource) -> Resource | None:
            if event_type in ("ADDED", "MODIFIED") and has_condition(obj, "NamesAccepted"):
                return obj
            return None

        if await self._await_event(subscription, match, timeout) is None:
            raise WaitTimeoutError(
                f"custom resource definition [{name}] to be accepted",
                timeout,
                _summarize_conditions(subscription.last_seen or applied),
            )

    # ------------------------------------------------------------------
    # Waits
    # ------------------------------------------------------------------

    async def get_annotation(self, kind: ResourceKind, resource: Mapping[str, Any], key: str) -> str:
        """Return the annotation value, waiting for it to appear if needed."""
        name = name_of(resource)
        timeout = self.timeouts.get_annotation
        subscription = await self._subscribe(kind, name, self._namespace_for(kind, resource))

        for candidate in (resource, subscription.current):
            if candidate is not None and key in annotations_of(candidate):
                return annotations_of(candidate)[key]

        def match(event_type: str, obj: Resource) -> Resource | None:
            if event_type in ("ADDED", "MODIFIED") and key in annotations_of(obj):
                return obj
            return None

        observed = await self._await_event(subscription, match, timeout)
        if observed is None:
            raise WaitTimeoutError(
                f"annotation [{key}] on {describe(kind, name)}",
                timeout,
                sorted(annotations_of(subscription.last_seen or resource)),
            )
        return annotations_of(observed)[key]

    async def verify_status(
        self,
        kind: ResourceKind,
        resource: Mapping[str, Any],
        predicate: Callable[[Resource], bool],
        timeout: float | None = None,
    ) -> Resource:
        """Wait until the object's current state satisfies ``predicate``.

        The current status is checked first; after that every modification
        is checked until the deadline.  ``timeout`` overrides
        ``timeouts.verify_status`` for this call.
        """
        name = name_of(resource)
        namespace = self._namespace_for(kind, resource)
        timeout = self.timeouts.verify_status if timeout is None else timeout
        subscription = await self._subscribe(kind, name, namespace)

        current = await self.api(kind).read_status(name, namespace)
        if predicate(current):
            return current
        subscription.last_seen = current

        def match(event_type: str, obj: Resource) -> Resource | None:
            if event_type in ("ADDED", "MODIFIED") and predicate(obj):
                return obj
            return None

        observed = await self._await_event(subscription, match, timeout)
        if observed is None:
            raise WaitTimeoutError(
                f"{describe(kind, name)} to reach the expected status",
                timeout,
                _summarize_conditions(subscription.last_seen or current),
            )
        return observed

    async def verify_pod_condition(
        self,
        pod: Mapping[str, Any],
        condition_type: str,
        timeout: float | None = None,
    ) -> Resource:
        """Wait until the pod reports ``condition_type`` as True."""
        return await self.verify_status(POD, pod, lambda obj: has_condition(obj, condition_type), timeout)

    async def get_logs(self, pod: Mapping[str, Any], params: LogParams | None = None) -> list[str]:
        """Stream the pod log and split it into lines."""
        params = params or LogParams()
        response = await self.api(POD).open_log(name_of(pod), self._namespace_for(POD, pod), **params.as_kwargs())
        try:
            chunks = [chunk async for chunk in response.content.iter_any()]
        finally:
            response.release()
        text = b"".join(chunks).decode("utf-8", errors="replace")
        if not text:
            return []
        # Only LF and CRLF end a log line.
        return [line.removesuffix("\r") for line in text.removesuffix("\n").split("\n")]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _namespace_for(self, kind: ResourceKind, resource: Mapping[str, Any]) -> str | None:
        if not kind.namespaced:
            return None
        return namespace_of(resource) or self.namespace

    async def _subscribe(self, kind: ResourceKind, name: str, namespace: str | None) -> _Subscription:
        """Record the watch position for ``name`` before a mutation is issued."""
        api = self.api(kind)
        listing = await api.list(namespace=namespace, field_selector=f"metadata.name={name}")
        items = listing.get("items") or []
        return _Subscription(
            api=api,
            name=name,
            namespace=namespace,
            resource_version=resource_version_of(listing),
            current=items[0] if items else None,
        )

    async def _await_event(
        self,
        subscription: _Subscription,
        match: EventMatcher,
        timeout: float,
    ) -> Resource | None:
        """Watch from the subscription position until ``match`` accepts an event.

        Returns ``None`` when the deadline passes.  Streams closed by the
        server before the deadline are reopened from the last seen version.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        func, args = subscription.api.list_target(subscription.namespace)
        try:
            async with asyncio.timeout(timeout):
                while True:
                    remaining = max(1, int(deadline - loop.time()) + 1)
                    kwargs: dict[str, Any] = {
                        "field_selector": subscription.field_selector,
                        "timeout_seconds": remaining,
                    }
                    if subscription.resource_version:
                        kwargs["resource_version"] = subscription.resource_version
                    w = watch.Watch()
                    try:
                        async for event in w.stream(func, *args, **kwargs):
                            event_type: str = event.get("type", "")
                            obj = event.get("raw_object")
                            if not isinstance(obj, dict):
                                continue
                            rv = resource_version_of(obj)
                            if rv:
                                subscription.resource_version = rv
                            subscription.last_seen = obj
                            found = match(event_type, obj)
                            if found is not None:
                                return found
                    finally:
                        await w.close()
                    self._log.debug("watch_reopen", resource=subscription.name)
                    await asyncio.sleep(_REOPEN_DELAY_S)
        except TimeoutError:
            return None


def _summarize_conditions(obj: Mapping[str, Any] | None) -> str | None:
    """``Ready=False, Initialized=True`` style summary for timeout messages."""
    if obj is None:
        return None
    conditions = conditions_of(obj)
    if not conditions:
        return "no conditions"
    return ", ".join(f"{c.get('type')}={c.get('status')}" for c in conditions)
