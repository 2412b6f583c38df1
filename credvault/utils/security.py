"""Security utilities for log hygiene and secret handling.

This module provides functions to prevent security vulnerabilities:
- Log injection: Sanitize user input before logging
- Sensitive data exposure: Mask or redact secrets in logs and responses
"""

import re
from typing import Iterable, Optional, Union

REDACTED = "[REDACTED]"


def sanitize_log_message(msg: Union[str, bytes, int, float, None]) -> str:
    """Remove newlines and control characters from log messages.

    Prevents log injection attacks where attackers inject newlines or control
    characters to corrupt log files or hide malicious activity.

    Args:
        msg: Message to sanitize (will be converted to string)

    Returns:
        Sanitized message with control characters removed

    Examples:
        >>> sanitize_log_message("site\\nmalicious\\nlog")
        'sitemaliciouslog'
    """
    if msg is None:
        return ""

    msg_str = str(msg)

    # Pattern matches: \n, \r, \t, and control chars (0x00-0x1f, 0x7f-0x9f)
    return re.sub(r'[\n\r\t\x00-\x1f\x7f-\x9f]', '', msg_str)


def mask_sensitive(value: Optional[str], visible_chars: int = 4, mask_char: str = "*") -> str:
    """Mask sensitive values, showing only the last N characters.

    Used for identifiers that are sensitive but useful when debugging, such
    as OAuth state values or access tokens. AI-provider API keys are never
    passed through here: they are not logged in any form.

    Args:
        value: Sensitive value to mask
        visible_chars: Number of characters to show at the end (default: 4)
        mask_char: Character to use for masking (default: "*")

    Returns:
        Masked string showing only last visible_chars characters

    Examples:
        >>> mask_sensitive("wf_token_1234567890abcdef")
        '***cdef'
        >>> mask_sensitive("abc")
        '***'
        >>> mask_sensitive(None)
        '***'
    """
    if not value:
        return mask_char * 3

    if len(value) <= visible_chars:
        return mask_char * 3

    return f"{mask_char * 3}{value[-visible_chars:]}"


def redact_secrets(text: Optional[str], secrets: Iterable[Optional[str]]) -> str:
    """Replace every occurrence of the given secrets in ``text``.

    Provider error bodies are surfaced to callers for diagnosis; some
    providers echo request parameters back, so the client secret and any
    token we sent are scrubbed first.

    Examples:
        >>> redact_secrets('{"client_secret": "s3cr3t"}', ["s3cr3t"])
        '{"client_secret": "[REDACTED]"}'
    """
    if not text:
        return ""

    redacted = text
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, REDACTED)
    return redacted
