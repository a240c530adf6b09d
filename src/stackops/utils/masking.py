"""Credential redaction for audit entries, log lines and tool output.

``redact_sensitive_fields`` masks values in nested dicts/lists by key name.
``redact_text`` masks free text: literal secret values that are known to the
caller, ``key=value`` pairs whose key looks sensitive, and the inline
``-p<password>`` form on mysql, mysqldump and mysqladmin command lines.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import lru_cache

MASK = "***"

_MAX_REDACT_DEPTH = 20

# Canonical list of sensitive key markers (substring match, case-insensitive).
SENSITIVE_KEY_MARKERS: list[str] = [
    "password",
    "passwd",
    "pwd",
    "secret",
    "token",
    "accesskey",
    "secretaccesskey",
    "sessiontoken",
    "apikey",
    "credential",
    "authorization",
]

_MYSQL_INLINE_PASSWORD_RE = re.compile(r"(\bmysql(?:dump|admin)?\b[^\n]*?\s-p)(?!\s)\S+")
_URL_USERINFO_RE = re.compile(r"(\w+://[^/\s:@]+:)[^@\s/]+(@)")


@lru_cache(maxsize=64)
def _get_mask_pattern(marker: str) -> re.Pattern:
    return re.compile(
        rf'(["\']?[\w-]*{re.escape(marker)}[\w-]*["\']?\s*[:=]\s*)["\']?[^"\'\s,;&]*["\']?',
        re.IGNORECASE,
    )


def redact_sensitive_fields(
    value: object,
    *,
    mask: str = MASK,
    depth: int = 0,
    max_depth: int = _MAX_REDACT_DEPTH,
    secrets: tuple[str, ...] = (),
) -> object:
    """Recursively replace sensitive values in dicts/lists.

    Keys are matched by *substring* against ``SENSITIVE_KEY_MARKERS``
    (case-insensitive). String leaves go through ``redact_text``. When
    ``max_depth`` is exceeded the entire sub-tree is replaced with *mask*.
    """
    if depth >= max_depth:
        return mask
    if isinstance(value, dict):
        redacted: dict[str, object] = {}
        for key, val in value.items():
            if any(marker in str(key).lower() for marker in SENSITIVE_KEY_MARKERS):
                redacted[key] = mask
            else:
                redacted[key] = redact_sensitive_fields(
                    val, mask=mask, depth=depth + 1, max_depth=max_depth, secrets=secrets,
                )
        return redacted
    if isinstance(value, (list, tuple)):
        return [
            redact_sensitive_fields(
                item, mask=mask, depth=depth + 1, max_depth=max_depth, secrets=secrets,
            )
            for item in value
        ]
    if isinstance(value, str):
        return redact_text(value, secrets=secrets, mask=mask)
    return value


def redact_text(text: str, secrets: Iterable[str] = (), *, mask: str = MASK) -> str:
    """Mask credentials in free text."""
    masked = text
    # Longest first so a secret that contains another is masked whole.
    for secret in sorted((s for s in secrets if s), key=len, reverse=True):
        masked = masked.replace(secret, mask)
    for marker in SENSITIVE_KEY_MARKERS:
        masked = _get_mask_pattern(marker).sub(rf"\g<1>{mask}", masked)
    masked = _MYSQL_INLINE_PASSWORD_RE.sub(rf"\g<1>{mask}", masked)
    masked = _URL_USERINFO_RE.sub(rf"\g<1>{mask}\g<2>", masked)
    return masked


class Redactor:
    """Holds the secret values known to the current process."""

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        self._secrets: set[str] = {s for s in secrets if s}

    def add(self, secret: str | None) -> None:
        if secret:
            self._secrets.add(secret)

    @property
    def secrets(self) -> tuple[str, ...]:
        return tuple(self._secrets)

    def text(self, value: str) -> str:
        return redact_text(value, self._secrets)

    def fields(self, value: object) -> object:
        return redact_sensitive_fields(value, secrets=self.secrets)
