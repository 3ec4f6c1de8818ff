"""Version information for gsuite-mcp."""

from importlib.metadata import PackageNotFoundError, version
from pathlib import Path


def _get_version() -> str:
    """Get version from installed metadata, a VERSION file, or the fallback."""
    try:
        return version("gsuite-mcp")
    except PackageNotFoundError:
        pass

    # Source checkout without an install
    root_version = Path(__file__).parent.parent.parent / "VERSION"
    if root_version.exists():
        return root_version.read_text().strip()

    # Fallback
    return "0.1.0"


__version__ = _get_version()
