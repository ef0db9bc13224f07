"""Input validation helpers for BucketOps.

These functions enforce naming rules independently of any HTTP handler so
they can be unit-tested in isolation. Each raises ``ValidationFailure``
on invalid input.
"""

import re

from bucketops.errors import ValidationFailure

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Container naming rules:
#   - 3-63 characters
#   - lowercase letters, digits and hyphens
#   - must start and end with a letter or digit
_CONTAINER_RE = re.compile(r"^[a-z0-9][a-z0-9\-]{1,61}[a-z0-9]$")

_FOLDER_RE = re.compile(r"^[A-Za-z0-9\-_/]+$")

_MAX_KEY_BYTES = 1024
_MAX_PAGE_SIZE = 1000


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_container_name(name: str) -> None:
    """Validate a container name.

    Raises:
        ValidationFailure: If the name breaks any naming rule.
    """
    if not name or not _CONTAINER_RE.match(name):
        raise ValidationFailure(
            "Container names must be 3-63 characters of lowercase letters, "
            "digits and hyphens, starting and ending with a letter or digit",
            details={"name": name},
        )


def validate_object_key(key: str) -> None:
    """Validate an object key.

    Raises:
        ValidationFailure: If the key is empty, a folder path, contains a
            ``..`` segment, or exceeds 1024 bytes when UTF-8 encoded.
    """
    if not key or key.endswith("/"):
        raise ValidationFailure("Object key is required", details={"key": key})
    if ".." in key.split("/"):
        raise ValidationFailure("Object key must not contain '..' segments", details={"key": key})
    if len(key.encode("utf-8")) > _MAX_KEY_BYTES:
        raise ValidationFailure("Object key is too long", details={"key": key})


def validate_folder_name(name: str) -> None:
    """Validate a folder name used for folder creation.

    Raises:
        ValidationFailure: If the name has characters outside
            letters, digits, ``-``, ``_`` and ``/``.
    """
    if not name or not _FOLDER_RE.match(name):
        raise ValidationFailure(
            "Folder name can only contain letters, numbers, hyphens, underscores and slashes",
            details={"folderName": name},
        )


def parse_page_size(value: str | None, default: int) -> int:
    """Parse a ``limit`` query parameter, clamped to 1..1000."""
    if value is None or value == "":
        return default
    try:
        size = int(value)
    except ValueError:
        raise ValidationFailure("limit must be an integer", details={"limit": value}) from None
    if size < 1:
        raise ValidationFailure("limit must be positive", details={"limit": value})
    return min(size, _MAX_PAGE_SIZE)


def parse_bool(value: str | None) -> bool:
    """Interpret a query flag such as ``force=true``."""
    return (value or "").strip().lower() in ("1", "true", "yes")
