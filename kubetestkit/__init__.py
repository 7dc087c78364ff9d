"""kubetestkit - Kubernetes resource lifecycle management for automated tests."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kubetestkit")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
