"""Site Monitor - periodic HTTP sampling with latency alerts."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("site-monitor")
except PackageNotFoundError:
    # Package is not installed (e.g., running from source without pip install)
    __version__ = "0.0.0.dev0"

# Re-export core public API
from sitemonitor.app import main
from sitemonitor.main import SiteMonitor

# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "__version__",
    "SiteMonitor",
    "main",
]
