"""
Quantity parsing for spoken hours and prices.

Every parser is layered the same way: a numeric match first, then a
table of spoken words, then a default. Hours also understand "<number>
and a half" in either word order ("six and a half hours", "2 hours and a
half"), which is checked before anything else. When several table words
appear, the one spoken first wins. Nothing here raises and nothing
returns a negative number; a wrong guess is read back to the user, who can
restart if it was misheard.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from shopvoice.config import settings
from shopvoice.utils import collapse_whitespace

logger = logging.getLogger(__name__)

DEFAULT_HOURS = 1.0

HOUR_NUMBERS: dict[str, float] = {
    "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
    "an": 1, "a": 1,
}

HOUR_WORDS: dict[str, float] = {
    **HOUR_NUMBERS,
    "half": 0.5, "a half": 0.5, "half an": 0.5,
}

PRICE_WORDS: dict[str, float] = {
    "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50, "sixty": 60,
    "seventy": 70, "eighty": 80, "ninety": 90,
    "hundred": 100, "a hundred": 100, "one hundred": 100,
    "one fifty": 150, "two hundred": 200, "two fifty": 250,
    "three hundred": 300,
}

FILLER_PREFIXES = ("i did", "we did", "performed", "completed")

_NUMBER = re.compile(r"(\d+(?:\.\d+)?)")
_PRICE = re.compile(r"\$?\s*(\d+(?:\.\d{1,2})?)")
_THOUSANDS = re.compile(r"(?<=\d),(?=\d{3}\b)")
_HOURS_UNIT = r"\s*(?:hours?|hrs?)\b"
_NUMERIC_HOURS = re.compile(r"(\d+(?:\.\d+)?)" + _HOURS_UNIT, re.IGNORECASE)
_FILLER = re.compile(
    r"^(?:" + "|".join(re.escape(p) for p in FILLER_PREFIXES) + r")\b\s*",
    re.IGNORECASE,
)
_TRAILING_CONNECTORS = re.compile(r"(?:\s+(?:for|and|of|about|at))+$", re.IGNORECASE)


def _longest_first(table: dict[str, float]) -> list[str]:
    return sorted(table, key=len, reverse=True)


def _word_pattern(phrase: str) -> re.Pattern:
    return re.compile(r"\b" + re.escape(phrase).replace(r"\ ", r"\s+") + r"\b", re.IGNORECASE)


def _alternation(table: dict[str, float]) -> str:
    return "|".join(re.escape(p).replace(r"\ ", r"\s+") for p in _longest_first(table))


_HOUR_PHRASES = [(p, _word_pattern(p)) for p in _longest_first(HOUR_WORDS)]
_PRICE_PHRASES = [(p, _word_pattern(p)) for p in _longest_first(PRICE_WORDS)]
_WORD_HOURS = re.compile(r"\b(" + _alternation(HOUR_WORDS) + r")" + _HOURS_UNIT, re.IGNORECASE)
# "six and a half", "2 hours and a half", "an hour and a half hours"
_AND_A_HALF = re.compile(
    r"\b(" + _alternation(HOUR_NUMBERS) + r"|\d+(?:\.\d+)?)\b"
    r"(" + _HOURS_UNIT + r")?\s+and\s+a\s+half\b(" + _HOURS_UNIT + r")?",
    re.IGNORECASE,
)


def _lookup_words(text: str, phrases: list[tuple[str, re.Pattern]], table: dict[str, float]) -> Optional[float]:
    """Return the value of the table phrase spoken first in ``text``.

    Phrases starting at the same position resolve to the longest one.
    """
    best: Optional[tuple[int, int, str]] = None
    for phrase, pattern in phrases:
        match = pattern.search(text)
        if match is None:
            continue
        key = (match.start(), -len(match.group(0)), phrase)
        if best is None or key < best:
            best = key
    return table[best[2]] if best is not None else None


def _half_value(match: re.Match) -> float:
    base = collapse_whitespace(match.group(1)).lower()
    value = HOUR_NUMBERS[base] if base in HOUR_NUMBERS else float(base)
    return float(value) + 0.5


def parse_hours(text: str) -> float:
    """Parse spoken labour hours.

    Examples:
        >>> parse_hours("two and a half hours")
        2.5
        >>> parse_hours("six hours and a half")
        6.5
        >>> parse_hours("3 hrs")
        3.0
        >>> parse_hours("")
        1.0
    """
    text = text or ""
    match = _AND_A_HALF.search(text)
    if match:
        return _half_value(match)
    match = _NUMBER.search(text)
    if match:
        return float(match.group(1))
    value = _lookup_words(text, _HOUR_PHRASES, HOUR_WORDS)
    if value is not None:
        return float(value)
    return DEFAULT_HOURS


def parse_price(text: str, default: Optional[float] = None) -> float:
    """Parse a spoken price, falling back to ``default`` (the shop's base price).

    Examples:
        >>> parse_price("$120")
        120.0
        >>> parse_price("one fifty")
        150.0
        >>> parse_price("whatever", default=95)
        95.0
    """
    if default is None:
        default = settings.shop.default_item_price
    text = _THOUSANDS.sub("", text or "")
    match = _PRICE.search(text)
    if match:
        return float(match.group(1))
    value = _lookup_words(text, _PRICE_PHRASES, PRICE_WORDS)
    if value is not None:
        return float(value)
    logger.debug("No price recognised in %r, using default %s", text, default)
    return float(max(default, 0))


@dataclass(frozen=True)
class ServiceAndHours:
    """A free-form item utterance split into its description and hours."""

    service: str
    hours: float


def parse_service_and_hours(text: str) -> ServiceAndHours:
    """Split "I did an oil change, one hour" into ``("oil change", 1.0)``.

    The hours phrase must carry a unit ("hour", "hrs", ...) to be removed
    from the description. Without one the hours default and the whole
    utterance is the description. The description may come back empty.
    """
    text = text or ""
    hours = DEFAULT_HOURS
    remainder = text

    match = _AND_A_HALF.search(text)
    if match and (match.group(2) or match.group(3)):
        hours = _half_value(match)
    else:
        match = _NUMERIC_HOURS.search(text)
        if match:
            hours = float(match.group(1))
        else:
            match = _WORD_HOURS.search(text)
            if match:
                phrase = collapse_whitespace(match.group(1)).lower()
                hours = float(HOUR_WORDS[phrase])
    if match:
        remainder = text[:match.start()] + " " + text[match.end():]

    service = collapse_whitespace(remainder)
    service = _FILLER.sub("", service)
    service = service.strip(" ,.;:-")
    service = _TRAILING_CONNECTORS.sub("", service).strip(" ,.;:-")
    return ServiceAndHours(service=service, hours=hours)
