"""
Content-based identity for news items.

The identity must stay byte-for-byte compatible with the ids already stored
in existing ``news.json`` files, so the hash walks UTF-16 code units and
wraps to a signed 32-bit integer on every step.
"""

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
_UINT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000


def to_base36(value: int) -> str:
    """Render a non-negative integer in lowercase base 36."""
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def _utf16_code_units(text: str) -> list[int]:
    data = text.encode("utf-16-le", errors="surrogatepass")
    return [data[i] | (data[i + 1] << 8) for i in range(0, len(data), 2)]


def rolling_hash32(text: str) -> int:
    """Return ``h = h * 31 + unit`` over UTF-16 units as a signed 32-bit int."""
    value = 0
    for unit in _utf16_code_units(text):
        value = (value * 31 + unit) & _UINT32_MASK
    if value & _INT32_SIGN:
        value -= _UINT32_MASK + 1
    return value


def generate_news_id(title: str, link: str) -> str:
    """Generate the stable identity of a news item from its title and link.

    Args:
        title: News title as extracted from the listing page.
        link: Absolute news URL.

    Returns:
        Base-36 rendering of the absolute 32-bit rolling hash of ``title_link``.
    """
    return to_base36(abs(rolling_hash32(f"{title}_{link}")))
