"""Session-id correlation for log records.

``VoiceOrchestrator.run`` binds the id of the session it drives with
``set_session_id`` before the first prompt and restores the previous value
with ``reset_session_id`` once the session has ended, whatever the outcome.
Each ``run`` executes in its own task, so the contextvar keeps the id of one
session out of the records of another; capture, transcription and commit
messages logged while that task runs carry the id too.

``load_config`` installs a format containing ``%(session_id)s`` and puts a
``SessionIdFilter`` on the root handlers, so every record is stamped.
Records logged outside a session show ``-``.
"""

import logging
from contextvars import ContextVar, Token

_session_id: ContextVar[str] = ContextVar("session_id", default="-")


def set_session_id(session_id: str) -> Token:
    """Set the session ID for the current async context."""
    return _session_id.set(session_id)


def reset_session_id(token: Token) -> None:
    """Restore the session ID that was active before ``set_session_id``."""
    _session_id.reset(token)


def get_session_id() -> str:
    """Retrieve the current session ID."""
    return _session_id.get()


class SessionIdFilter(logging.Filter):
    """Injects session_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = _session_id.get()  # type: ignore[attr-defined]
        return True


def get_session_logger(name: str) -> logging.Logger:
    """Return a logger with the SessionIdFilter attached.

    The filter adds ``session_id`` to each record so formatters can
    include ``%(session_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, SessionIdFilter) for f in logger.filters):
        logger.addFilter(SessionIdFilter())
    return logger
