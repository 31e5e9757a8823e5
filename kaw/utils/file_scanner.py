"""File scanner — discover manifest files in a pulled artifact."""

from pathlib import Path

# Extensions treated as structured manifests, matched case-insensitively
MANIFEST_EXTENSIONS = {".yaml", ".yml"}


def find_manifest_files(directory: Path) -> list[Path]:
    """Recursively collect YAML files under *directory*, sorted by path.

    Raises:
        FileNotFoundError: If the directory does not exist.
        NotADirectoryError: If the path is not a directory.
    """
    if not directory.exists():
        raise FileNotFoundError(f"Directory does not exist: {directory}")
    if not directory.is_dir():
        raise NotADirectoryError(f"Not a directory: {directory}")

    files = []
    for item in directory.rglob("*"):
        if item.is_file() and is_manifest_file(item):
            files.append(item)
    return sorted(files)


def is_manifest_file(path: Path) -> bool:
    """Check whether a file carries a manifest extension."""
    return path.suffix.lower() in MANIFEST_EXTENSIONS


def sanitize_path(value: str) -> str:
    """Make a version identifier safe to use as a single path component."""
    return value.replace(":", "_").replace("/", "_")
