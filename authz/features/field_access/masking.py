"""
Masking strategies: pure functions from a raw value to a display string.
"""
import re
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

from authz.core import config
from authz.features.field_access.schemas import MaskingStrategy
from authz.utils import get_logger


log = get_logger(__name__)

MAX_MASK_LENGTH = 8
REDACTED = "[REDACTED]"
AMOUNT_HIDDEN = "[AMOUNT HIDDEN]"

CustomMask = Callable[[Any], str]

_DIGITS = re.compile(r"\d")


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def mask_asterisk(value: Any) -> str:
    return "*" * min(len(_text(value)), MAX_MASK_LENGTH)


def mask_dots(value: Any) -> str:
    return "•" * min(len(_text(value)), MAX_MASK_LENGTH)


def mask_redacted(value: Any) -> str:
    return REDACTED


def mask_partial(value: Any) -> str:
    """Keep the first two and last two characters. Four or fewer are fully masked."""
    text = _text(value)
    if len(text) <= 4:
        return "*" * len(text)
    return text[:2] + "*" * (len(text) - 4) + text[-2:]


def mask_initials(value: Any) -> str:
    """'john ronald smith' -> 'J.R.S'"""
    return ".".join(word[0] for word in _text(value).split()).upper()


def mask_domain(value: Any) -> str:
    text = _text(value)
    if "@" in text:
        return "***@" + text.rsplit("@", 1)[1]
    return "***"


def mask_currency(value: Any, symbol: Optional[str] = None) -> str:
    """12345.5 -> '$**,***.**'. Non-numeric values are hidden outright."""
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return AMOUNT_HIDDEN
    symbol = config.DEFAULT_CURRENCY_SYMBOL if symbol is None else symbol
    return symbol + _DIGITS.sub("*", f"{value:,.2f}")


_STRATEGIES: dict[MaskingStrategy, CustomMask] = {
    MaskingStrategy.ASTERISK: mask_asterisk,
    MaskingStrategy.DOTS: mask_dots,
    MaskingStrategy.REDACTED: mask_redacted,
    MaskingStrategy.PARTIAL: mask_partial,
    MaskingStrategy.INITIALS: mask_initials,
    MaskingStrategy.DOMAIN: mask_domain,
    MaskingStrategy.CURRENCY: mask_currency,
}


def apply_masking(
    strategy: MaskingStrategy,
    value: Any,
    custom_mask: Optional[str] = None,
    custom_masks: Optional[Mapping[str, CustomMask]] = None
) -> str:
    """
    Mask ``value`` with ``strategy``.

    ``custom`` looks ``custom_mask`` up in ``custom_masks``; an unregistered
    name falls back to redaction.
    """
    if strategy == MaskingStrategy.CUSTOM:
        mask = (custom_masks or {}).get(custom_mask or "")
        if mask is None:
            log.warning(f"Custom mask {custom_mask!r} is not registered; redacting")
            return REDACTED
        return mask(value)
    return _STRATEGIES[strategy](value)
