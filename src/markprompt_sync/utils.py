"""Small helpers shared across layers."""

from datetime import datetime, timezone
from fnmatch import fnmatchcase


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every datetime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def truncate(text: str, max_length: int) -> str:
    return text if len(text) <= max_length else text[:max_length]


SUPPORTED_EXTENSIONS = frozenset({"md", "mdx", "mdoc", "rst", "html", "htm", "txt", "text"})


def get_file_extension(path: str) -> str | None:
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return None
    return name.rsplit(".", 1)[-1].lower()


def should_include_path(
    path: str,
    include_globs: list[str] | None,
    exclude_globs: list[str] | None,
) -> bool:
    """
    Decide whether a repository path is ingested.

    Paths inside dot-folders (e.g. .github) and files with unsupported
    extensions are always skipped. Globs are matched against the path
    without its leading slash; ``*`` also matches across folders.
    """
    relative = path.lstrip("/")
    if not relative:
        return False

    parts = relative.split("/")
    if any(part.startswith(".") for part in parts[:-1]):
        return False

    if get_file_extension(relative) not in SUPPORTED_EXTENSIONS:
        return False

    includes = include_globs or ["**/*"]
    if not any(_glob_match(relative, pattern) for pattern in includes):
        return False

    if exclude_globs and any(_glob_match(relative, pattern) for pattern in exclude_globs):
        return False

    return True


def _glob_match(path: str, pattern: str) -> bool:
    pattern = pattern.lstrip("/")
    if fnmatchcase(path, pattern):
        return True
    # "**/*.md" should also match top-level "README.md"
    if pattern.startswith("**/"):
        return fnmatchcase(path, pattern[3:])
    return False
