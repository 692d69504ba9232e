"""Hostname normalization and validation.

Normalization must stay stable: stored hostnames are compared after it, so any
change would let two spellings of the same host slip past the uniqueness check.
"""

from __future__ import annotations

import re

_PROTOCOL_RE = re.compile(r"^https?://")
_WWW_RE = re.compile(r"^www\.")
# \Z rather than $ so a trailing newline does not end the match early.
_PATH_RE = re.compile(r"/.*\Z")

_HOSTNAME_RE = re.compile(
    r"^(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$"
)


def normalize_hostname(raw: str) -> str:
    """Normalize a user-supplied domain.

    Lower-cases, strips a leading http:// or https://, a leading www.,
    everything from the first slash on, then surrounding whitespace.

    >>> normalize_hostname("HTTPS://WWW.Example.com/path")
    'example.com'
    """
    value = raw.lower()
    value = _PROTOCOL_RE.sub("", value, count=1)
    value = _WWW_RE.sub("", value, count=1)
    value = _PATH_RE.sub("", value, count=1)
    return value.strip()


def matches_hostname_syntax(hostname: str) -> bool:
    """Check an already normalized hostname against the accepted syntax."""
    return _HOSTNAME_RE.fullmatch(hostname) is not None


def is_valid_hostname(raw: str) -> bool:
    """Check that the normalized form of ``raw`` looks like a registrable hostname."""
    return matches_hostname_syntax(normalize_hostname(raw))


def txt_record_name(hostname: str, prefix: str = "_pmo-verify") -> str:
    """Name of the TXT record that carries the ownership token."""
    return f"{prefix}.{hostname}"
