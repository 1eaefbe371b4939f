"""Classify short yes / done answers from a transcript."""

import re

from shopvoice.utils import normalize_utterance

YES_WORDS = (
    "yes", "yeah", "yep", "sure", "ok", "okay", "correct",
    "affirmative", "please", "go ahead",
)
DONE_WORDS = (
    "done", "finished", "thats it", "skip", "stop", "no more",
)
NEGATIONS = ("no", "nope", "nah", "not", "nothing", "dont")


def _phrase_pattern(phrases: tuple[str, ...]) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(re.escape(p) for p in phrases) + r")\b")


_YES = _phrase_pattern(YES_WORDS)
_DONE = _phrase_pattern(DONE_WORDS)
# a leading negation or a negated yes word declines; "sure, why not" accepts
_NEGATION = re.compile(r"^(?:" + "|".join(re.escape(p) for p in NEGATIONS) + r")\b")
_NEGATED_YES = re.compile(r"\b(?:not|dont)\s+(?:" + "|".join(re.escape(p) for p in YES_WORDS) + r")\b")


def is_affirmative(text: str) -> bool:
    """True for "yes", "yeah sure" or "ok go ahead".

    False when the answer opens with a negation or negates a yes word
    ("not sure"). A trailing "why not" still counts as yes.

    >>> is_affirmative("Yeah, one more")
    True
    >>> is_affirmative("no thanks")
    False
    """
    normalized = normalize_utterance(text or "")
    if _NEGATION.match(normalized) or _NEGATED_YES.search(normalized):
        return False
    return bool(_YES.search(normalized))


def is_done(text: str) -> bool:
    """True when the user wants to skip the remaining items.

    >>> is_done("That's it")
    True
    """
    return bool(_DONE.search(normalize_utterance(text or "")))
