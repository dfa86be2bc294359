"""Secret redaction applied to every file before chunking.

Credential-shaped substrings are replaced with ``[REDACTED]`` so neither the
embeddings nor the chunk store ever hold a live secret.
"""

from __future__ import annotations

import re

PLACEHOLDER = "[REDACTED]"

# Applied in order; later patterns see earlier replacements.
_SECRET_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?:api[_-]?key|apikey)\s*[:=]\s*['\"]?[A-Za-z0-9_\-]{16,}['\"]?", re.IGNORECASE),
    re.compile(r"(?:secret|token|password|passwd|pwd)\s*[:=]\s*['\"]?[A-Za-z0-9_\-]{8,}['\"]?", re.IGNORECASE),
    re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"sk-[A-Za-z0-9]{32,}"),
    re.compile(r"ghp_[A-Za-z0-9]{36}"),
)


def redact_secrets(text: str) -> str:
    """Return *text* with every secret-shaped substring replaced."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(PLACEHOLDER, text)
    return text
