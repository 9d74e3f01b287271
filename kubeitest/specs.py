"""Helpers for textual resource specifications, names and label selectors.

Functions:
    from_yaml: Decode a YAML specification into a dict
    to_yaml: Encode a resource dict as YAML
    with_unique_name: Append a UUID to ``metadata.name`` of a YAML spec
    unique_instance_name: Build a length-capped name with a random suffix
    format_label_selector: Render a label mapping as ``k1=v1,k2=v2``
    parse_label_selector: Parse equality-based selectors back into a mapping
    selector_matches: Check whether labels satisfy an equality selector
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Mapping
from typing import Any

import yaml

from kubeitest.errors import SpecDecodeError

# Kubernetes label values and most resource names are capped at 63 characters.
MAX_NAME_LENGTH = 63
_SUFFIX_LENGTH = 8
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]")


def from_yaml(text: str) -> dict[str, Any]:
    """Decode a single YAML document describing one resource.

    Raises:
        SpecDecodeError: If the text is not well-formed YAML or does not
            describe a mapping.
    """
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise SpecDecodeError(f"Specification is not well-formed YAML: {exc}") from exc
    if not isinstance(document, dict):
        raise SpecDecodeError(f"Specification must be a mapping, got {type(document).__name__}")
    return document


def to_yaml(obj: Mapping[str, Any]) -> str:
    return yaml.safe_dump(dict(obj), sort_keys=False)


def with_unique_name(text: str) -> str:
    """Append ``-<uuid4>`` to ``metadata.name`` of the given YAML spec.

    Guarantees distinct names across repeated test runs against the same
    cluster.  All other fields are preserved.
    """
    spec = from_yaml(text)
    metadata = spec.get("metadata")
    name = metadata.get("name") if isinstance(metadata, dict) else None
    if not isinstance(name, str) or not name:
        raise SpecDecodeError("metadata/name is missing or invalid")
    metadata["name"] = f"{name}-{uuid.uuid4()}"
    return to_yaml(spec)


def unique_instance_name(base: str, max_length: int = MAX_NAME_LENGTH) -> str:
    """Return ``<base>-<random suffix>`` no longer than ``max_length``.

    The base name is normalised to lowercase DNS-label characters and
    truncated as needed; the suffix is never shortened.

    Example:
        >>> name = unique_instance_name("simple-zookeeper")
        >>> name.startswith("simple-zookeeper-") and len(name) <= 63
        True
    """
    suffix = uuid.uuid4().hex[:_SUFFIX_LENGTH]
    max_base_length = max_length - len(suffix) - 1
    if max_base_length < 1:
        raise ValueError(f"max_length {max_length} leaves no room for a base name")

    normalized = _INVALID_NAME_CHARS.sub("", base.lower().replace("_", "-")).strip("-")
    normalized = normalized[:max_base_length].rstrip("-")
    if not normalized:
        normalized = "test"
    return f"{normalized}-{suffix}"


def format_label_selector(labels: Mapping[str, str]) -> str:
    """Render ``labels`` as a comma-joined equality selector."""
    return ",".join(f"{key}={value}" for key, value in labels.items())


def parse_label_selector(selector: str) -> dict[str, str]:
    """Parse an equality-based selector (``=`` or ``==``) into a mapping.

    Raises:
        ValueError: On set-based or inequality requirements, which this
            helper does not model.
    """
    labels: dict[str, str] = {}
    for requirement in filter(None, (part.strip() for part in selector.split(","))):
        if "!=" in requirement or "=" not in requirement:
            raise ValueError(f"Unsupported selector requirement: {requirement!r}")
        key, _, value = requirement.partition("==") if "==" in requirement else requirement.partition("=")
        labels[key.strip()] = value.strip()
    return labels


def selector_matches(selector: Mapping[str, str], labels: Mapping[str, str] | None) -> bool:
    """True if ``labels`` contains every key/value pair of ``selector``."""
    labels = labels or {}
    return all(labels.get(key) == value for key, value in selector.items())
