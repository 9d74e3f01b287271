"""kubeitest - integration test support for Kubernetes operators."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kubeitest")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
