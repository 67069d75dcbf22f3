"""eTraxis: issue tracking with template-driven workflows."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("etraxis")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
