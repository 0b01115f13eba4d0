"""
Notification gating and sinks.

The engine decides whether to notify and with what text; delivery is the
sink's business. Verbosity levels:

    LEVEL_OFF      nothing
    LEVEL_ERRORS   errors only
    LEVEL_DEFAULT  errors and fills (plus "open sell", see listener)
    LEVEL_VERBOSE  everything: opened, cancelled, info
"""
import json
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol, Union

from .logging_setup import logger
from .models import Order

LEVEL_OFF = 0
LEVEL_ERRORS = 1
LEVEL_DEFAULT = 2
LEVEL_VERBOSE = 3


class Kind(Enum):
    ERROR = "error"
    FILLED = "filled"
    OPENED = "opened"
    CANCELLED = "cancelled"
    INFO = "info"


class Frequency(Enum):
    ALWAYS = 0
    ONCE_PER_MINUTE = 60


def can_send(level: int, kind: Kind) -> bool:
    if level >= LEVEL_VERBOSE:
        return True
    if level == LEVEL_DEFAULT:
        return kind in (Kind.ERROR, Kind.FILLED)
    if level == LEVEL_ERRORS:
        return kind == Kind.ERROR
    return False


Message = Union[str, Order]


def render(message: Message) -> str:
    if isinstance(message, Order):
        return json.dumps(message.to_dict())
    return str(message)


class Notifier(Protocol):
    def send_message(self, message: Message, title: str, frequency: Frequency = Frequency.ALWAYS) -> None: ...


class SocialPoster(Protocol):
    def post(self, text: str) -> None: ...


class LogNotifier:
    """Notifier that writes to the log. Used when no push backend is wired in."""

    def send_message(self, message: Message, title: str, frequency: Frequency = Frequency.ALWAYS) -> None:
        logger.info(f"[NOTIFY] {title} | {render(message)}")


class LogSocialPoster:
    def post(self, text: str) -> None:
        logger.info(f"[POST] {text}")


class ThrottledNotifier:
    """Drops ONCE_PER_MINUTE messages whose title was already sent in the last minute.

    Keeps a repeating error from flooding the delivery channel every cycle.
    """

    def __init__(self, inner: Notifier, clock: Callable[[], float] = time.monotonic):
        self.inner = inner
        self.clock = clock
        self._last_sent: Dict[str, float] = {}

    def send_message(self, message: Message, title: str, frequency: Frequency = Frequency.ALWAYS) -> None:
        if frequency != Frequency.ALWAYS:
            now = self.clock()
            last = self._last_sent.get(title)
            if last is not None and now - last < frequency.value:
                logger.debug(f"Notification suppressed | title={title}")
                return
            self._last_sent[title] = now
        self.inner.send_message(message, title, frequency)


def safe_send(service: Optional[Notifier], message: Message, title: str, frequency: Frequency = Frequency.ALWAYS) -> None:
    """Send through `service`, logging (not raising) delivery failures."""
    if service is None:
        return
    try:
        service.send_message(message, title, frequency)
    except Exception as e:
        logger.error(f"Notification failed | title={title} error={e}")


def safe_post(poster: Optional[SocialPoster], text: str) -> None:
    if poster is None:
        return
    try:
        poster.post(text)
    except Exception as e:
        logger.error(f"Social post failed | error={e}")


def report_error(err: Any, level: int, service: Optional[Notifier], title: str = "Bittrex - ERROR") -> None:
    """Log an error and, if the level allows, notify at most once per minute."""
    logger.opt(exception=err if isinstance(err, BaseException) else None).error(f"{err}")
    if can_send(level, Kind.ERROR):
        safe_send(service, str(err), title, Frequency.ONCE_PER_MINUTE)
