"""Secret redaction for OAuth and QuickBooks payloads in log lines.

Token endpoint responses and outbound headers carry bearer and refresh
tokens. Everything logged from those paths goes through this module.
"""

_SENSITIVE_KEY_PARTS = frozenset({
    "token", "secret", "authorization", "password", "code",
})

_REDACTED = "***REDACTED***"


def mask_token(value: str | None, visible: int = 6) -> str:
    """Return a short, non-reversible preview of a token for log lines.

    Args:
        value: Token string (None renders as '<none>').
        visible: Number of leading characters to keep.

    Returns:
        Prefix followed by '...', or the redaction marker for short values.
    """
    if not value:
        return "<none>"
    if len(value) <= visible * 2:
        return _REDACTED
    return f"{value[:visible]}..."


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _SENSITIVE_KEY_PARTS)


def redact_for_logging(obj: dict) -> dict:
    """Copy a payload with sensitive values replaced.

    Matches keys case-insensitively on substrings such as 'token' and
    'secret', recursing into nested dicts and lists of dicts.

    Args:
        obj: Dict to redact (not mutated).

    Returns:
        New dict safe to log.
    """
    result = {}
    for key, value in obj.items():
        if _is_sensitive(str(key)):
            result[key] = _REDACTED
        elif isinstance(value, dict):
            result[key] = redact_for_logging(value)
        elif isinstance(value, list):
            result[key] = [
                redact_for_logging(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value
    return result
