import re
from typing import Optional

_SEPARATORS = re.compile(r"[:\-.\s]")
_PLAIN_MAC = re.compile(r"[0-9A-F]{12}")


def mac_plain(raw: Optional[str]) -> Optional[str]:
    """Return the 12 upper-case hex digits of `raw`, or None if it is not a MAC."""
    if not raw:
        return None
    digits = _SEPARATORS.sub("", str(raw)).upper()
    if not _PLAIN_MAC.fullmatch(digits):
        return None
    return digits


def normalize_mac(raw: Optional[str]) -> Optional[str]:
    """
    Canonical colon-separated upper-case form, e.g.
    "00-15-65-aa-bb-20" -> "00:15:65:AA:BB:20".
    """
    digits = mac_plain(raw)
    if digits is None:
        return None
    return ":".join(digits[i:i + 2] for i in range(0, 12, 2))
