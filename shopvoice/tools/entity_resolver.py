"""
Resolve a spoken customer name or vehicle description to a known record.

Matching tiers, first hit wins:
    1. exact (case-insensitive) match on the full name / "{year} {make} {model}"
    2. containment in either direction
    3. token overlap: any candidate token longer than two characters that
       appears in the spoken text

Within a tier, candidates are tried in list order, so the same input and
candidate list always give the same answer. ``None`` means no match.
"""

import logging
from typing import Callable, Optional, Sequence, TypeVar

from shopvoice.schemas.shop_schema import Customer, Vehicle
from shopvoice.utils import normalize_utterance

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_TOKEN_LENGTH = 3


def _exact(spoken: str, label: str) -> bool:
    return spoken == label


def _contains(spoken: str, label: str) -> bool:
    return label in spoken or spoken in label


def _token_overlap(spoken: str, label: str) -> bool:
    return any(len(token) >= MIN_TOKEN_LENGTH and token in spoken for token in label.split())


_TIERS: list[tuple[str, Callable[[str, str], bool]]] = [
    ("exact", _exact),
    ("contains", _contains),
    ("token", _token_overlap),
]


def _resolve(spoken: str, candidates: Sequence[T], label: Callable[[T], str]) -> Optional[T]:
    spoken = normalize_utterance(spoken or "")
    if not spoken:
        return None
    labels = [normalize_utterance(label(c)) for c in candidates]
    for tier, matches in _TIERS:
        for candidate, candidate_label in zip(candidates, labels):
            if candidate_label and matches(spoken, candidate_label):
                logger.debug("Matched %r to %r (%s)", spoken, candidate_label, tier)
                return candidate
    logger.debug("No match for %r among %d candidates", spoken, len(candidates))
    return None


def find_customer_by_name(spoken: str, customers: Sequence[Customer]) -> Optional[Customer]:
    """Match a spoken name against the customer list."""
    return _resolve(spoken, customers, lambda c: c.name)


def find_vehicle_by_description(spoken: str, vehicles: Sequence[Vehicle]) -> Optional[Vehicle]:
    """Match a spoken description against ``vehicles``.

    Pass only the resolved customer's vehicles; nothing outside the given
    list can be returned.
    """
    return _resolve(spoken, vehicles, lambda v: v.description)
