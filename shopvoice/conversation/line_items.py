"""
Line-item accumulator.

Append-only: items are never edited or removed during a session. ``total``
is the pre-tax sum; tax is applied by the commit boundary.
"""

import dataclasses

from shopvoice.conversation.session import ConversationSession
from shopvoice.schemas.shop_schema import LineItem


def add_item(session: ConversationSession, item: LineItem) -> ConversationSession:
    """Return a copy of ``session`` with ``item`` appended."""
    return dataclasses.replace(session, line_items=session.line_items + (item,))


def total(session: ConversationSession) -> float:
    return round(sum(item.price for item in session.line_items), 2)
