"""Generic verbs over the generated kubernetes_asyncio API classes.

Built-in kinds are served by typed API classes whose method names follow a
fixed pattern (``read_namespaced_pod``, ``list_node``, ...).  Everything
else goes through ``CustomObjectsApi``.  Both paths return plain dicts in
wire form so the rest of kubeitest never deals with generated models.
"""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from typing import Any

from kubernetes_asyncio import client as k8s_client

from kubeitest.models.resources import Resource, ResourceKind

APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"

# (group, version) -> typed API class
_TYPED_APIS: dict[tuple[str, str], type] = {
    ("", "v1"): k8s_client.CoreV1Api,
    ("apps", "v1"): k8s_client.AppsV1Api,
    ("batch", "v1"): k8s_client.BatchV1Api,
    ("apiextensions.k8s.io", "v1"): k8s_client.ApiextensionsV1Api,
}

ListFunc = Callable[..., Coroutine[Any, Any, Any]]


class KindApi:
    """Dispatches list/read/create/apply/delete for one :class:`ResourceKind`.

    Usage::

        pods = KindApi(api_client, POD)
        listing = await pods.list(label_selector="app=web")
    """

    def __init__(self, api_client: Any, kind: ResourceKind) -> None:
        self.kind = kind
        self._api_client = api_client
        typed_cls = _TYPED_APIS.get((kind.group, kind.version))
        self._typed = typed_cls is not None
        self._api: Any = typed_cls(api_client) if typed_cls is not None else k8s_client.CustomObjectsApi(api_client)

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    async def list(
        self,
        namespace: str | None = None,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> Resource:
        """List objects; ``namespace=None`` lists across all namespaces.

        Returns the list object itself so callers can read
        ``metadata.resourceVersion`` alongside ``items``.
        """
        func, args = self.list_target(namespace)
        kwargs: dict[str, Any] = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if field_selector:
            kwargs["field_selector"] = field_selector
        return self._to_dict(await func(*args, **kwargs))

    def list_target(self, namespace: str | None) -> tuple[ListFunc, tuple[Any, ...]]:
        """Return the list function and positional args, also used for watches."""
        kind = self.kind
        if self._typed:
            if not kind.namespaced:
                return getattr(self._api, f"list_{kind.snake_name}"), ()
            if namespace is None:
                return getattr(self._api, f"list_{kind.snake_name}_for_all_namespaces"), ()
            return getattr(self._api, f"list_namespaced_{kind.snake_name}"), (namespace,)
        if kind.namespaced and namespace is not None:
            return self._api.list_namespaced_custom_object, (kind.group, kind.version, namespace, kind.plural)
        return self._api.list_cluster_custom_object, (kind.group, kind.version, kind.plural)

    async def read(self, name: str, namespace: str | None) -> Resource:
        kind = self.kind
        if self._typed:
            if kind.namespaced:
                result = await getattr(self._api, f"read_namespaced_{kind.snake_name}")(name, namespace)
            else:
                result = await getattr(self._api, f"read_{kind.snake_name}")(name)
        elif kind.namespaced:
            result = await self._api.get_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, name
            )
        else:
            result = await self._api.get_cluster_custom_object(kind.group, kind.version, kind.plural, name)
        return self._to_dict(result)

    async def read_status(self, name: str, namespace: str | None) -> Resource:
        """Read through the ``/status`` subresource where the kind has one."""
        kind = self.kind
        if not kind.has_status:
            return await self.read(name, namespace)
        if self._typed:
            if kind.namespaced:
                result = await getattr(self._api, f"read_namespaced_{kind.snake_name}_status")(name, namespace)
            else:
                result = await getattr(self._api, f"read_{kind.snake_name}_status")(name)
        elif kind.namespaced:
            result = await self._api.get_namespaced_custom_object_status(
                kind.group, kind.version, namespace, kind.plural, name
            )
        else:
            result = await self._api.get_cluster_custom_object_status(kind.group, kind.version, kind.plural, name)
        return self._to_dict(result)

    async def create(self, body: Resource, namespace: str | None) -> Resource:
        kind = self.kind
        if self._typed:
            if kind.namespaced:
                result = await getattr(self._api, f"create_namespaced_{kind.snake_name}")(namespace, body)
            else:
                result = await getattr(self._api, f"create_{kind.snake_name}")(body)
        elif kind.namespaced:
            result = await self._api.create_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, body
            )
        else:
            result = await self._api.create_cluster_custom_object(kind.group, kind.version, kind.plural, body)
        return self._to_dict(result)

    async def apply(self, body: Resource, namespace: str | None, field_manager: str) -> Resource:
        """Server-side apply, taking ownership of conflicting fields."""
        kind = self.kind
        name = body["metadata"]["name"]
        options: dict[str, Any] = {
            "field_manager": field_manager,
            "force": True,
            "_content_type": APPLY_PATCH_CONTENT_TYPE,
        }
        if self._typed:
            if kind.namespaced:
                result = await getattr(self._api, f"patch_namespaced_{kind.snake_name}")(
                    name, namespace, body, **options
                )
            else:
                result = await getattr(self._api, f"patch_{kind.snake_name}")(name, body, **options)
        elif kind.namespaced:
            result = await self._api.patch_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, name, body, **options
            )
        else:
            result = await self._api.patch_cluster_custom_object(
                kind.group, kind.version, kind.plural, name, body, **options
            )
        return self._to_dict(result)

    async def delete(self, name: str, namespace: str | None) -> Resource:
        """Issue a delete; the result is either a ``Status`` or the terminating object."""
        kind = self.kind
        if self._typed:
            if kind.namespaced:
                result = await getattr(self._api, f"delete_namespaced_{kind.snake_name}")(name, namespace)
            else:
                result = await getattr(self._api, f"delete_{kind.snake_name}")(name)
        elif kind.namespaced:
            result = await self._api.delete_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, name
            )
        else:
            result = await self._api.delete_cluster_custom_object(kind.group, kind.version, kind.plural, name)
        return self._to_dict(result)

    async def open_log(self, name: str, namespace: str | None, **params: Any) -> Any:
        """Open the pod log as a raw streaming response (pods only)."""
        if self.kind.kind != "Pod" or not self._typed:
            raise TypeError(f"{self.kind.kind} objects have no log")
        return await self._api.read_namespaced_pod_log(name, namespace, _preload_content=False, **params)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _to_dict(self, result: Any) -> Resource:
        if result is None:
            return {}
        if isinstance(result, dict):
            return result
        return self._api_client.sanitize_for_serialization(result)  # type: ignore[no-any-return]
