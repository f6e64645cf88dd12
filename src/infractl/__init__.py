"""Install and operate the RustCare infrastructure compose stack."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("infractl")
except PackageNotFoundError:
    # Source checkout without an installed distribution
    __version__ = "0.0.0+source"
