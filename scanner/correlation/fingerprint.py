import hashlib
import re
from typing import Optional

from scanner.models import Category, Location

_SEPARATOR = "\x1f"
_WHITESPACE = re.compile(r"\s+")


def normalize_path(path: Optional[str]) -> str:
    if not path:
        return "."
    path = str(path).replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path or "."


def normalize_message(message: Optional[str]) -> str:
    return _WHITESPACE.sub(" ", message or "").strip().lower()


def compute_fingerprint(
    category: Category,
    rule_id: str,
    location: Location,
    message: str,
) -> str:
    """
    Stable dedup key for a finding.

    The tool name is NOT part of the key, so two scanners reporting
    the same issue at the same place collapse into one finding.
    """
    start = "" if location.start_line is None else str(location.start_line)
    end = "" if location.end_line is None else str(location.end_line)

    payload = _SEPARATOR.join([
        category.value,
        rule_id.strip().lower(),
        normalize_path(location.path),
        f"{start}:{end}",
        normalize_message(message),
    ])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
