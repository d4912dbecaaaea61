"""
Percent-encoding for URL text and form parameters.

Policy:
- bytes in A-Z a-z 0-9 - _ . ~ are never escaped
- plain mode also leaves '$' and ',' alone and writes a space as %20
- parameter mode escapes '$' and ',' and writes a space as '+'
- escapes use uppercase hex over the UTF-8 bytes of the text
"""

from urllib.parse import quote, quote_plus, unquote_plus

UNRESERVED = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)

# Legal in a URL, but not inside a parameter value.
_PLAIN_EXTRA_SAFE = "$,"


def encode(text: str, parameter_mode: bool = False) -> str:
    """Escape every character of ``text`` that isn't legal in a URL."""
    if parameter_mode:
        return quote_plus(text, safe="")
    return quote(text, safe=_PLAIN_EXTRA_SAFE)


def decode(text: str) -> str:
    """Replace escape sequences and '+' with the characters they stand for.

    Malformed sequences such as a lone '%' or '%zz' are left as they are and
    undecodable bytes become U+FFFD, so this never raises.
    """
    return unquote_plus(text, encoding="utf-8", errors="replace")
