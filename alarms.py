"""Named wake timers that survive process restarts."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from config import ALARM_CHECK_INTERVAL, ALARMS_KEY, MINUTE_MS
from scheduler import now_ms
from storage import Storage, StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Alarm:
    name: str
    when: int
    period_minutes: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Alarm":
        period = data.get("period_minutes")
        return cls(
            name=str(data["name"]),
            when=int(data["when"]),
            period_minutes=float(period) if period else None,
        )

    def to_dict(self) -> dict:
        return {"name": self.name, "when": self.when, "period_minutes": self.period_minutes}


class AlarmService:
    """
    Named wake-timer service.

    Alarms are kept in the local storage partition, so a restarted process
    picks them up again. A background thread checks for due alarms every
    `check_interval` seconds. Creating an alarm replaces any alarm with the
    same name.
    """

    def __init__(
        self,
        storage: Storage,
        clock: Callable[[], int] = now_ms,
        check_interval: float = ALARM_CHECK_INTERVAL,
    ):
        self.storage = storage
        self.clock = clock
        self.check_interval = check_interval
        self._listeners: List[Callable[[str], None]] = []
        self._lock = threading.RLock()
        self._running = False
        self._thread: Optional[threading.Thread] = None

    def _load(self) -> List[Alarm]:
        try:
            raw = self.storage.local.get(ALARMS_KEY) or []
        except StorageError as e:
            logger.warning("Alarms unavailable: %s", e)
            return []
        alarms = []
        if not isinstance(raw, list):
            return alarms
        for item in raw:
            try:
                alarms.append(Alarm.from_dict(item))
            except (AttributeError, KeyError, TypeError, ValueError):
                logger.warning("Dropping malformed alarm: %r", item)
        return alarms

    def _save(self, alarms: List[Alarm]) -> None:
        if alarms:
            self.storage.local.set(ALARMS_KEY, [a.to_dict() for a in alarms])
        else:
            self.storage.local.remove(ALARMS_KEY)

    def create(
        self,
        name: str,
        when: Optional[int] = None,
        delay_minutes: Optional[float] = None,
        period_minutes: Optional[float] = None,
    ) -> Alarm:
        """
        Arm the alarm `name`, replacing any previous one.

        Args:
            when: Absolute fire time in epoch milliseconds.
            delay_minutes: Fire this many minutes from now.
            period_minutes: Re-fire every this many minutes. Used for the
                first delay too when neither `when` nor `delay_minutes` is given.
        """
        now = self.clock()
        if when is None:
            delay = delay_minutes if delay_minutes is not None else period_minutes or 0
            when = now + int(delay * MINUTE_MS)
        alarm = Alarm(name=name, when=int(when), period_minutes=period_minutes)
        with self._lock:
            alarms = [a for a in self._load() if a.name != name]
            alarms.append(alarm)
            self._save(alarms)
        logger.debug("Armed alarm %s for %s", name, alarm.when)
        return alarm

    def clear(self, name: str) -> bool:
        """Disarm `name`. Returns False if it was not armed."""
        with self._lock:
            alarms = self._load()
            remaining = [a for a in alarms if a.name != name]
            if len(remaining) == len(alarms):
                return False
            self._save(remaining)
        logger.debug("Cleared alarm %s", name)
        return True

    def get(self, name: str) -> Optional[Alarm]:
        for alarm in self._load():
            if alarm.name == name:
                return alarm
        return None

    def get_all(self) -> List[Alarm]:
        return self._load()

    def add_listener(self, callback: Callable[[str], None]) -> None:
        self._listeners.append(callback)

    def fire_due(self) -> List[str]:
        """
        Fire every alarm whose time has come.

        Due alarms are removed (or rescheduled, if periodic) before any
        listener runs, so a failing listener cannot make them fire twice.
        """
        now = self.clock()
        with self._lock:
            alarms = self._load()
            due = [a for a in alarms if a.when <= now]
            if not due:
                return []
            kept = [a for a in alarms if a.when > now]
            for alarm in due:
                if alarm.period_minutes:
                    kept.append(
                        Alarm(alarm.name, now + int(alarm.period_minutes * MINUTE_MS), alarm.period_minutes)
                    )
            self._save(kept)

        fired = []
        for alarm in due:
            logger.debug("Alarm %s fired", alarm.name)
            fired.append(alarm.name)
            for callback in list(self._listeners):
                try:
                    callback(alarm.name)
                except Exception:
                    logger.exception("Error in alarm listener for %s", alarm.name)
        return fired

    def _run_loop(self) -> None:
        """Main ticker loop."""
        while self._running:
            try:
                self.storage.refresh()
                self.fire_due()
            except StorageError as e:
                logger.warning("Alarm check failed: %s", e)
            time.sleep(self.check_interval)

    def start(self) -> None:
        """Start the ticker in a background thread."""
        if self._running:
            return

        self._running = True
        self._thread = threading.Thread(target=self._run_loop, name="alarms", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the ticker."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=self.check_interval + 1)
            self._thread = None

    def is_running(self) -> bool:
        """Check if the ticker is running."""
        return self._running and self._thread is not None and self._thread.is_alive()
