"""
Utilities for rendering token byte sequences in logs and error messages.
"""

import unicodedata


def _escape_ctrl_chars(s: str) -> str:
    """Replace all Unicode control characters with their escape sequences."""
    cleaned = []
    for c in s:
        # control category codes vary: Cc, Cf, Cs etc.
        # so check via first character
        if unicodedata.category(c)[0] != "C":
            cleaned.append(c)
        else:
            cleaned.append(f"\\u{ord(c):04x}")
    return "".join(cleaned)


def render_symbol(b: bytes) -> str:
    """
    Render one symbol in brackets with control characters escaped.

    Symbols that are not valid UTF-8 on their own (e.g. half of a multi-byte
    character) are shown as hex.
    """
    try:
        return f"[{_escape_ctrl_chars(b.decode('utf-8'))}]"
    except UnicodeDecodeError:
        return f"[0x{b.hex()}]"


def render_pair(left: bytes, right: bytes) -> str:
    """Render a merge rule as ``[left][right] -> [merged]``."""
    return f"{render_symbol(left)}{render_symbol(right)} -> {render_symbol(left + right)}"
