"""Shared utilities used across the voice capture flow."""

import re

_PUNCTUATION = re.compile(r"[^\w\s$.']")
_WHITESPACE = re.compile(r"\s+")


def normalize_utterance(value: str) -> str:
    """Lower-case a transcript, drop stray punctuation and collapse whitespace.

    Examples:
        >>> normalize_utterance("  John   Smith! ")
        'john smith'
        >>> normalize_utterance("Oil change, 1.5 hrs")
        'oil change 1.5 hrs'
    """
    value = _PUNCTUATION.sub(" ", value.lower())
    value = value.replace("'", "")
    return _WHITESPACE.sub(" ", value).strip().rstrip(".")


def collapse_whitespace(value: str) -> str:
    """Collapse runs of whitespace and strip the ends, keeping case."""
    return _WHITESPACE.sub(" ", value).strip()


def format_hours(hours: float) -> str:
    """Render hours for speech: ``1 hour``, ``2.5 hours``."""
    amount = int(hours) if float(hours).is_integer() else hours
    return f"{amount} hour" if hours == 1 else f"{amount} hours"


def format_money(amount: float) -> str:
    """Render a price for speech: ``$80``, ``$80.50``."""
    if float(amount).is_integer():
        return f"${int(amount)}"
    return f"${amount:.2f}"
