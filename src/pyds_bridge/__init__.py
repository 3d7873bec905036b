"""Bridge between a host query engine and data sources implemented in an extension runtime."""
from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("pyds-bridge")
except PackageNotFoundError:  # pragma: no cover - during local dev without install
    __version__ = "0.0.0"

__all__ = ["__version__"]
