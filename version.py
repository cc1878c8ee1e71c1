"""
Version information for the AshtaPashaka server.

VERSION is read from the VERSION file in the project root, the same file
packaging reads, so the startup banner and installed metadata agree.
"""
from pathlib import Path


def _get_version_file_path() -> Path:
    """Get the path to the VERSION file."""
    return Path(__file__).parent / "VERSION"


def get_version() -> str:
    """Read and return the version string from VERSION file.

    Returns:
        Version string (e.g., "0.1.0"), or "unknown" if the file is missing.
    """
    try:
        return _get_version_file_path().read_text().strip() or "unknown"
    except OSError:
        return "unknown"


# Expose VERSION constant at module level
VERSION = get_version()
