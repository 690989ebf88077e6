from __future__ import annotations

import re
from typing import Final

REDACTED: Final = "[REDACTED]"
PRIVATE_PLACEHOLDER: Final = "[PRIVATE]"

# Bump when patterns are added, removed or reordered.
REDACTION_PATTERNS_VERSION: Final = 2

# Specific shapes come first; the broad "anything up to whitespace" value
# patterns run last so they absorb redaction markers left by earlier ones.
REDACTION_PATTERNS: Final[tuple[tuple[str, re.Pattern[str]], ...]] = (
    (
        "pem_private_key",
        re.compile(
            r"-----BEGIN\s+(?:RSA\s+|ENCRYPTED\s+)?PRIVATE\s+KEY-----[\s\S]*?"
            r"-----END\s+(?:RSA\s+|ENCRYPTED\s+)?PRIVATE\s+KEY-----",
            re.IGNORECASE,
        ),
    ),
    ("ssh_public_key", re.compile(r"ssh-(?:rsa|ed25519|dss)\s+[A-Za-z0-9+/=]+", re.IGNORECASE)),
    ("aws_access_key_id", re.compile(r"AKIA[0-9A-Z]{16}")),
    (
        "aws_key_assignment",
        re.compile(r"aws_access_key_id\s*[:=]\s*[\"']?[A-Z0-9]+[\"']?", re.IGNORECASE),
    ),
    (
        "aws_secret_assignment",
        re.compile(r"aws_secret_access_key\s*[:=]\s*[\"']?[\w/+=]+[\"']?", re.IGNORECASE),
    ),
    ("api_key", re.compile(r"api[_-]?key\s*[:=]\s*[\"']?[\w-]+[\"']?", re.IGNORECASE)),
    ("secret", re.compile(r"secret\s*[:=]\s*[\"']?[\w.-]+[\"']?", re.IGNORECASE)),
    ("token", re.compile(r"token\s*[:=]\s*[\"']?[\w.-]+[\"']?", re.IGNORECASE)),
    ("bearer", re.compile(r"bearer\s+[\w.-]+", re.IGNORECASE)),
    ("authorization", re.compile(r"authorization\s*:\s*[\"']?[\w.-]+[\"']?", re.IGNORECASE)),
    ("password", re.compile(r"passw(?:or)?d\s*[:=]\s*[\"']?[^\"'\s]+[\"']?", re.IGNORECASE)),
    ("connection_url", re.compile(r"(?:mongodb|mysql|postgres|redis)://[^\s\"']+", re.IGNORECASE)),
    (
        "connection_env",
        re.compile(
            r"(?:DATABASE_URL|REDIS_URL|MONGO_URI)\s*[:=]\s*[\"']?[^\s\"']+[\"']?",
            re.IGNORECASE,
        ),
    ),
)

_ADJACENT_RE = re.compile(r"\[REDACTED\](?:\s*\[REDACTED\])+")
_PRIVATE_TAG_RE = re.compile(r"<(/?)private\s*>", re.IGNORECASE)


def _apply_patterns(text: str) -> str:
    for _name, pattern in REDACTION_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return _ADJACENT_RE.sub(REDACTED, text)


def redact(text: str) -> str:
    """Replace secrets with ``[REDACTED]``; applying it twice changes nothing."""
    redacted = _apply_patterns(text)
    for _ in range(len(REDACTION_PATTERNS)):
        again = _apply_patterns(redacted)
        if again == redacted:
            break
        redacted = again
    return redacted


def contains_secret(text: str) -> bool:
    return any(pattern.search(text) for _name, pattern in REDACTION_PATTERNS)


def matched_categories(text: str) -> list[str]:
    return [name for name, pattern in REDACTION_PATTERNS if pattern.search(text)]


def strip_private(text: str, placeholder: str = PRIVATE_PLACEHOLDER) -> str:
    """Replace each outermost ``<private>`` span with ``placeholder``.

    Nested tags are balanced; an unclosed span hides the rest of the text and
    a stray closing tag is dropped.
    """
    out: list[str] = []
    depth = 0
    pos = 0
    for match in _PRIVATE_TAG_RE.finditer(text):
        closing = bool(match.group(1))
        if depth == 0:
            out.append(text[pos : match.start()])
            if not closing:
                out.append(placeholder)
                depth = 1
        elif closing:
            depth -= 1
        else:
            depth += 1
        pos = match.end()
    if depth == 0:
        out.append(text[pos:])
    return "".join(out)


def has_private_block(text: str) -> bool:
    return bool(_PRIVATE_TAG_RE.search(text))
