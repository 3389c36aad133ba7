"""
Webhook payload normalizer.

The agent platform has sent callbacks in several shapes over time. Each
extracted field is described by an ordered table of key paths; the first
path that yields a non-blank value wins. Accepting a new shape is a
one-line change to a table.
"""

import enum
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional

from orchestra.core.orchestration.errors import InvalidPayloadError

KeyPath = tuple[str, ...]

STATUS_PATHS: tuple[KeyPath, ...] = (
    ("status",),
    ("data", "status"),
    ("event",),
)

PR_URL_PATHS: tuple[KeyPath, ...] = (
    ("target", "prUrl"),
    ("target", "pr_url"),
    ("pr_url",),
    ("prUrl",),
    ("data", "pr_url"),
    ("data", "prUrl"),
)

ERROR_MESSAGE_PATHS: tuple[KeyPath, ...] = (
    ("error_message",),
    ("error",),
    ("data", "error"),
    ("message",),
)


@dataclass(frozen=True)
class NormalizedWebhook:
    """Canonical view of one callback."""
    status: str
    pr_url: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def status_token(self) -> str:
        return self.status.upper()


def _key_name(key: Any) -> Any:
    if isinstance(key, enum.Enum):
        return key.value
    if isinstance(key, bytes):
        return key.decode("utf-8", errors="replace")
    return key


def _lookup(node: Mapping, key: str) -> Any:
    """Fetch ``key`` whether the mapping uses str, bytes or enum keys."""
    if key in node:
        return node[key]
    for candidate, value in node.items():
        if _key_name(candidate) == key:
            return value
    return None


def dig(payload: Any, path: KeyPath) -> Any:
    """Follow a key path, returning None if any level is missing or not a mapping."""
    node = payload
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = _lookup(node, key)
        if node is None:
            return None
    return node


def _as_text(value: Any) -> Optional[str]:
    """Scalars become text; containers and blank strings count as absent."""
    if value is None or isinstance(value, (Mapping, list, tuple, set)):
        return None
    text = value if isinstance(value, str) else str(value)
    return text if text.strip() else None


def first_present(payload: Any, paths: tuple[KeyPath, ...]) -> Optional[str]:
    for path in paths:
        value = _as_text(dig(payload, path))
        if value is not None:
            return value
    return None


def extract_status(payload: Any) -> Optional[str]:
    """Status token with its original case, or None."""
    return first_present(payload, STATUS_PATHS)


def extract_pr_url(payload: Any) -> Optional[str]:
    return first_present(payload, PR_URL_PATHS)


def extract_error_message(payload: Any) -> Optional[str]:
    return first_present(payload, ERROR_MESSAGE_PATHS)


def normalize_webhook(payload: Any) -> NormalizedWebhook:
    """
    Extract status, PR URL and error message from a raw payload.

    Raises:
        InvalidPayloadError: no status token in any known location
    """
    status = extract_status(payload)
    if status is None:
        raise InvalidPayloadError()

    return NormalizedWebhook(
        status=status,
        pr_url=extract_pr_url(payload),
        error_message=extract_error_message(payload),
    )
