"""PII scrubbing for arbitrary JSON-like values.

Strings have card numbers, SSNs, emails, phone numbers and IPv4 addresses
replaced by category placeholders (in that order). Mapping keys that look
sensitive are replaced wholesale by ``FIELD_MARKER``. Statistics are tallied
from the substitutions actually made, so redacting already-redacted data
reports zero.
"""

import re
from collections import Counter
from typing import Any

from pydantic import BaseModel

FIELD_MARKER = "****REDACTED****"

STRING_PATTERNS: tuple[tuple[str, re.Pattern[str], str], ...] = (
    ("cards", re.compile(r"\b\d{13,19}\b"), "****REDACTED_CARD****"),
    ("ssns", re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "****REDACTED_SSN****"),
    (
        "emails",
        re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
        "****REDACTED_EMAIL****",
    ),
    ("phones", re.compile(r"\b\d{10}\b"), "****REDACTED_PHONE****"),
    ("ips", re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"), "****REDACTED_IP****"),
)

SENSITIVE_FIELDS = (
    "password",
    "secret",
    "token",
    "apikey",
    "api_key",
    "creditcard",
    "credit_card",
    "cardnumber",
    "card_number",
    "cvv",
    "ssn",
    "socialsecurity",
    "social_security",
    "email",
    "phonenumber",
    "phone_number",
    "address",
    "dateofbirth",
    "date_of_birth",
)


class RedactionStats(BaseModel):
    total_redacted: int = 0
    cards: int = 0
    ssns: int = 0
    emails: int = 0
    phones: int = 0
    ips: int = 0
    fields: int = 0


class RedactionResult(BaseModel):
    data: Any
    stats: RedactionStats
    redaction_applied: bool


def is_sensitive_field(name: str) -> bool:
    lowered = name.lower()
    return any(field in lowered for field in SENSITIVE_FIELDS)


def redact_string(text: str, counts: Counter | None = None) -> str:
    for category, pattern, placeholder in STRING_PATTERNS:
        text, n = pattern.subn(placeholder, text)
        if counts is not None and n:
            counts[category] += n
    return text


def _walk(value: Any, counts: Counter) -> Any:
    if isinstance(value, str):
        return redact_string(value, counts)
    if isinstance(value, list | tuple):
        return [_walk(item, counts) for item in value]
    if isinstance(value, dict):
        redacted = {}
        for key, item in value.items():
            if is_sensitive_field(str(key)):
                if item != FIELD_MARKER:
                    counts["fields"] += 1
                redacted[key] = FIELD_MARKER
            else:
                redacted[key] = _walk(item, counts)
        return redacted
    return value


def redact(value: Any) -> RedactionResult:
    counts: Counter = Counter()
    data = _walk(value, counts)
    stats = RedactionStats(total_redacted=sum(counts.values()), **counts)
    return RedactionResult(data=data, stats=stats, redaction_applied=stats.total_redacted > 0)
