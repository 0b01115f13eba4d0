"""Request governor: adaptive per-endpoint throttling shared across processes.

Bittrex enforces one rate limit per account no matter how many processes
call it, so every request to the exchange goes through a RequestGovernor
that:

- serializes calls through an OS-level file lock in the session directory,
- spaces calls by the endpoint's requests-per-second budget, measured from
  the last request any process made,
- slows an endpoint down by one intensity tier each time the exchange
  rejects it for exceeding the limit, and forces one "super" throttled
  call right after such a rejection (cooldown).

Session state lives in three files per exchange: `<name>.time` (epoch of
the last request), `<name>.json` (`{"cooldown": bool, "calls": [...]}`)
and `<name>.lock`.
"""
import json
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Protocol

import portalocker

from .logging_setup import logger


class Intensity(IntEnum):
    """Throttle tier of one endpoint; higher means slower."""
    LOW = 1
    TWO = 2
    THREE = 3
    FOUR = 4
    SUPER = 5


REQUESTS_PER_SECOND: Dict[Intensity, float] = {
    Intensity.LOW: 1.0,
    Intensity.TWO: 0.5,
    Intensity.THREE: 1 / 3,
    Intensity.FOUR: 0.25,
    Intensity.SUPER: 0.1,
}


def requests_per_second(intensity: int) -> float:
    return REQUESTS_PER_SECOND[Intensity(min(max(intensity, Intensity.LOW), Intensity.SUPER))]


def normalize_path(path: str) -> str:
    """Strip the query string: `/orders/closed?marketSymbol=X` -> `/orders/closed`."""
    return path.split("?", 1)[0]


@dataclass
class EndpointCallRecord:
    path: str
    intensity: int = Intensity.LOW

    def to_dict(self) -> dict:
        return {"path": self.path, "intensity": int(self.intensity)}

    @classmethod
    def from_dict(cls, d: dict) -> "EndpointCallRecord":
        return cls(path=str(d["path"]), intensity=int(d["intensity"]))


DEFAULT_CALLS = (
    EndpointCallRecord("/orders/closed", Intensity.TWO),
    EndpointCallRecord("/orders/open", Intensity.LOW),
    EndpointCallRecord("/markets", Intensity.LOW),
    EndpointCallRecord("/conditional-orders/open", Intensity.LOW),
)


def default_calls() -> List[EndpointCallRecord]:
    return [EndpointCallRecord(c.path, c.intensity) for c in DEFAULT_CALLS]


@dataclass
class SessionInfo:
    """Persisted throttle document: cooldown flag plus per-endpoint records."""
    cooldown: bool = False
    calls: List[EndpointCallRecord] = field(default_factory=default_calls)

    def find(self, path: str) -> Optional[EndpointCallRecord]:
        for call in self.calls:
            if call.path == path:
                return call
        return None

    def to_dict(self) -> dict:
        return {"cooldown": self.cooldown, "calls": [c.to_dict() for c in self.calls]}

    @classmethod
    def from_dict(cls, d: dict) -> "SessionInfo":
        return cls(
            cooldown=bool(d.get("cooldown", False)),
            calls=[EndpointCallRecord.from_dict(c) for c in (d.get("calls") or [])],
        )


class SessionStore(Protocol):
    """Persistence backend for the governor's session state.

    `load_*` may raise; the governor degrades to defaults. `save_*` errors
    propagate.
    """

    def load_last_request(self) -> Optional[float]: ...

    def save_last_request(self, ts: float) -> None: ...

    def load_info(self) -> SessionInfo: ...

    def save_info(self, info: SessionInfo) -> None: ...


class SessionLock(Protocol):
    def acquire(self) -> None: ...

    def release(self) -> None: ...


class FileSessionStore:
    """Session files in a shared directory, written whole via temp file + rename."""

    def __init__(self, directory: Path, name: str = "bittrex"):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)
        self.name = name

    @property
    def time_file(self) -> Path:
        return self.directory / f"{self.name}.time"

    @property
    def info_file(self) -> Path:
        return self.directory / f"{self.name}.json"

    @property
    def lock_file(self) -> Path:
        return self.directory / f"{self.name}.lock"

    def _write(self, path: Path, text: str) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        tmp.chmod(0o600)
        tmp.replace(path)

    def load_last_request(self) -> Optional[float]:
        if not self.time_file.exists():
            return None
        return float(self.time_file.read_text(encoding="utf-8").strip())

    def save_last_request(self, ts: float) -> None:
        self._write(self.time_file, repr(ts))

    def load_info(self) -> SessionInfo:
        with self.info_file.open("r", encoding="utf-8") as f:
            return SessionInfo.from_dict(json.load(f))

    def save_info(self, info: SessionInfo) -> None:
        self._write(self.info_file, json.dumps(info.to_dict()))

    def make_lock(self) -> "FileLock":
        return FileLock(self.lock_file)


class MemorySessionStore:
    """In-process session state, for tests and single-process dry runs."""

    def __init__(self, info: Optional[SessionInfo] = None, last_request: Optional[float] = None):
        self.info = info
        self.last_request = last_request

    def load_last_request(self) -> Optional[float]:
        return self.last_request

    def save_last_request(self, ts: float) -> None:
        self.last_request = ts

    def load_info(self) -> SessionInfo:
        if self.info is None:
            raise FileNotFoundError("no session info")
        return SessionInfo.from_dict(self.info.to_dict())

    def save_info(self, info: SessionInfo) -> None:
        self.info = SessionInfo.from_dict(info.to_dict())


class FileLock:
    """Exclusive OS-level lock on a file, shared by every process using the session directory."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._handle = None

    def acquire(self) -> None:
        handle = open(self.path, "a")
        try:
            portalocker.lock(handle, portalocker.LOCK_EX)
        except Exception:
            handle.close()
            raise
        self._handle = handle

    def release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            portalocker.unlock(handle)
        finally:
            handle.close()


class ThreadLock:
    """In-process stand-in for FileLock."""

    def __init__(self):
        self._lock = threading.Lock()

    def acquire(self) -> None:
        self._lock.acquire()

    def release(self) -> None:
        self._lock.release()


class RequestGovernor:
    """Throttle every outbound request through the shared session state.

    Usage:
        with governor.throttle("/orders/open") as cooled:
            resp = session.get(...)
            if resp.status_code == 429:
                governor.handle_rate_limit_error("/orders/open", cooled)
    """

    def __init__(
        self,
        store: SessionStore,
        lock: SessionLock,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.lock = lock
        self.clock = clock
        self.sleep = sleep

    @classmethod
    def for_directory(cls, directory: Path, name: str = "bittrex", **kwargs) -> "RequestGovernor":
        store = FileSessionStore(directory, name)
        return cls(store, store.make_lock(), **kwargs)

    def _load_info(self) -> Optional[SessionInfo]:
        try:
            return self.store.load_info()
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.debug(f"Session info unavailable, using defaults | error={e}")
            return None

    def requests_per_second(self, path: str) -> tuple:
        """Return (rps, cooled) for a call to `path`.

        An active cooldown is consumed here: it is cleared and the super
        tier is returned for this one call.
        """
        info = self._load_info()
        if info is None:
            info = SessionInfo()
        elif info.cooldown:
            info.cooldown = False
            try:
                self.store.save_info(info)
            except OSError as e:
                logger.warning(f"Failed to clear cooldown flag | error={e}")
            return requests_per_second(Intensity.SUPER), True
        record = info.find(normalize_path(path))
        if record is not None:
            return requests_per_second(record.intensity), False
        return requests_per_second(Intensity.LOW), False

    def before_request(self, path: str) -> bool:
        """Acquire the session lock and wait out the endpoint's budget.

        Returns:
            True if this call runs under a forced cooldown

        Raises:
            Whatever the lock raises if it cannot be acquired; the lock is
            not held in that case.
        """
        self.lock.acquire()
        try:
            try:
                last = self.store.load_last_request()
            except (OSError, ValueError) as e:
                logger.warning(f"Unreadable last-request time, treating as first call | error={e}")
                last = None
            cooled = False
            if last is not None:
                elapsed = self.clock() - last
                rps, cooled = self.requests_per_second(path)
                interval = 1.0 / rps
                if elapsed < interval:
                    delay = interval - elapsed
                    logger.debug(f"Throttling | path={path} sleep={delay:.3f}s cooled={cooled}")
                    self.sleep(delay)
            logger.debug(f"Request | path={path}")
            return cooled
        except BaseException:
            self.lock.release()
            raise

    def after_request(self) -> None:
        """Record the completion time and release the session lock."""
        try:
            self.store.save_last_request(self.clock())
        except OSError as e:
            logger.warning(f"Failed to record last-request time | error={e}")
        finally:
            self.lock.release()

    @contextmanager
    def throttle(self, path: str) -> Iterator[bool]:
        cooled = self.before_request(path)
        try:
            yield cooled
        finally:
            self.after_request()

    def handle_rate_limit_error(self, path: str, cooled: bool) -> None:
        """Slow `path` down one tier (unless just cooled) and arm a cooldown.

        Must be called while the session lock is held, i.e. inside
        throttle(). Write errors propagate.
        """
        path = normalize_path(path)
        info = self._load_info() or SessionInfo()
        record = info.find(path)
        if record is None:
            record = EndpointCallRecord(path, Intensity.LOW)
            info.calls.append(record)
        if not cooled:
            # rate limited right after a cooldown means another cooldown round,
            # not a slower endpoint
            record.intensity = min(record.intensity + 1, Intensity.SUPER)
        info.cooldown = True
        logger.warning(f"Rate limited | path={path} intensity={record.intensity} cooled={cooled}")
        self.store.save_info(info)
