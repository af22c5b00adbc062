"""Minimal filter for secrets and personal data in commit and chat text."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from . import telemetry

# (label, pattern, replacement), applied in order
_RULES: list[tuple[str, re.Pattern, str]] = [
    ("keys", re.compile(r"\b(sk-|pk-|rk-|AIza|AKIA|gho_|ghp_|ghs_|ghu_|glpat-)[a-zA-Z0-9_-]{10,}"), "[REDACTED_KEY]"),
    ("keys", re.compile(r"\b(api_?key|token|secret|password|credential)[\s:=]+[a-f0-9]{16,64}\b", re.IGNORECASE), "[REDACTED_KEY]"),
    ("keys", re.compile(r"\b(api_?key|token|secret|password|credential)[\s:=]+[a-zA-Z0-9_-]{20,}\b", re.IGNORECASE), "[REDACTED_KEY]"),
    ("keys", re.compile(r"\b[a-zA-Z0-9_-]{8,}(\*{3}|\.{3})\b"), "[REDACTED_KEY]"),
    ("jwts", re.compile(r"\beyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+"), "[REDACTED_JWT]"),
    ("tokens", re.compile(r"Bearer\s+[a-zA-Z0-9\-._~+/]+", re.IGNORECASE), "[REDACTED_TOKEN]"),
    ("emails", re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"), "[REDACTED_EMAIL]"),
]


@dataclass
class RedactionResult:
    """Filtered text plus how many matches of each kind were replaced."""
    text: str
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


def redact(text: str) -> RedactionResult:
    """Replace API keys, JWTs, bearer tokens and email addresses.

    Only counts are recorded, never the matched values.
    """
    counts = {"keys": 0, "jwts": 0, "tokens": 0, "emails": 0}
    if not text:
        return RedactionResult(text=text, counts=counts)

    result = text
    for label, pattern, replacement in _RULES:
        result, n = pattern.subn(replacement, result)
        counts[label] += n

    total = sum(counts.values())
    if total:
        telemetry.counter("commit_story.filter.redactions", total)
    return RedactionResult(text=result, counts=counts)


def redact_sensitive_data(text: str) -> str:
    """Convenience wrapper returning only the filtered text."""
    return redact(text).text
