"""User settings: the shared record read by the controller and the card gamble."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

import countdown
from config import (
    DEFAULT_BLOCKED_HOSTS,
    DEFAULT_DURATIONS,
    DEFAULT_FOCUS_HOURS,
    DEFAULT_HOST_DURATION_MINUTES,
    DEFAULT_MODE,
    DEFAULT_WINDOWS,
    HOUR_MS,
    MODE_FOCUS,
    MODE_SCHEDULED,
    SETTINGS_KEY,
)
from countdown import INACTIVE, Countdown
from domains import normalize_domain
from scheduler import BlockWindow
from storage import Storage, StorageError

logger = logging.getLogger(__name__)

MODES = (MODE_SCHEDULED, MODE_FOCUS)

FOCUS_END_KEY = "focus_time_end"
FOCUS_PAUSED_KEY = "focus_time_paused"


class SettingsError(ValueError):
    """Invalid settings input."""


def _is_minutes(value) -> bool:
    """Positive whole minutes. Booleans are not numbers here."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _default_windows() -> List[BlockWindow]:
    return [BlockWindow.from_dict(w) for w in DEFAULT_WINDOWS]


def _default_durations() -> Dict[str, List[int]]:
    return {host: list(DEFAULT_DURATIONS) for host in DEFAULT_BLOCKED_HOSTS}


@dataclass
class Settings:
    enabled: bool = True
    blocked_hosts: List[str] = field(default_factory=lambda: list(DEFAULT_BLOCKED_HOSTS))
    windows: List[BlockWindow] = field(default_factory=_default_windows)
    domain_durations: Dict[str, List[int]] = field(default_factory=_default_durations)
    mode: str = DEFAULT_MODE
    focus_time_hours: float = DEFAULT_FOCUS_HOURS
    focus_timer: Countdown = INACTIVE

    @property
    def focus_active(self) -> bool:
        """Focus mode with a focus session running or paused."""
        return self.mode == MODE_FOCUS and countdown.is_active(self.focus_timer)

    def durations_for(self, host: str) -> List[int]:
        return list(self.domain_durations.get(host, []))

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Settings":
        """Build settings over the defaults. Malformed fields fall back to their default."""
        settings = cls()
        if data is None:
            return settings
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed settings record: %r", data)
            return settings

        if isinstance(data.get("enabled"), bool):
            settings.enabled = data["enabled"]

        hosts = data.get("blocked_hosts")
        if isinstance(hosts, list) and all(isinstance(h, str) for h in hosts):
            settings.blocked_hosts = list(hosts)

        raw_windows = data.get("windows")
        if isinstance(raw_windows, list):
            windows = []
            for raw in raw_windows:
                try:
                    windows.append(BlockWindow.from_dict(raw))
                except (KeyError, TypeError, ValueError):
                    logger.warning("Dropping malformed window: %r", raw)
            settings.windows = windows

        durations = data.get("domain_durations")
        if isinstance(durations, dict):
            settings.domain_durations = {
                host: sorted({m for m in minutes if _is_minutes(m)})
                for host, minutes in durations.items()
                if isinstance(host, str) and isinstance(minutes, list)
            }

        if data.get("mode") in MODES:
            settings.mode = data["mode"]

        hours = data.get("focus_time_hours")
        if isinstance(hours, (int, float)) and not isinstance(hours, bool) and hours > 0:
            settings.focus_time_hours = hours

        settings.focus_timer = countdown.from_fields(data, FOCUS_END_KEY, FOCUS_PAUSED_KEY)
        return settings

    def to_dict(self) -> dict:
        data = {
            "enabled": self.enabled,
            "blocked_hosts": list(self.blocked_hosts),
            "windows": [w.to_dict() for w in self.windows],
            "domain_durations": {h: list(m) for h, m in self.domain_durations.items()},
            "mode": self.mode,
            "focus_time_hours": self.focus_time_hours,
        }
        data.update(countdown.to_fields(self.focus_timer, FOCUS_END_KEY, FOCUS_PAUSED_KEY))
        return data


# Mutations. Each returns a new Settings and leaves the input untouched.


def add_host(settings: Settings, host: str) -> Settings:
    """Add a blocked host with the default duration. Duplicates are ignored."""
    host = host.strip()
    for prefix in ("https://", "http://"):
        if host.lower().startswith(prefix):
            host = host[len(prefix):]
    host = host.split("/", 1)[0]
    if not host:
        raise SettingsError("Host must not be empty")

    normalized = normalize_domain(host)
    if any(normalize_domain(h) == normalized for h in settings.blocked_hosts):
        return settings

    durations = {h: list(m) for h, m in settings.domain_durations.items()}
    minutes = set(durations.get(host, []))
    minutes.add(DEFAULT_HOST_DURATION_MINUTES)
    durations[host] = sorted(minutes)
    return replace(
        settings,
        blocked_hosts=settings.blocked_hosts + [host],
        domain_durations=durations,
    )


def remove_host(settings: Settings, host: str) -> Settings:
    normalized = normalize_domain(host)
    removed = [h for h in settings.blocked_hosts if normalize_domain(h) == normalized]
    if not removed:
        return settings
    return replace(
        settings,
        blocked_hosts=[h for h in settings.blocked_hosts if h not in removed],
        domain_durations={
            h: list(m) for h, m in settings.domain_durations.items() if h not in removed
        },
    )


def set_durations(settings: Settings, host: str, minutes: List[int]) -> Settings:
    if host not in settings.blocked_hosts:
        raise SettingsError(f"{host} is not a blocked host")
    if not all(_is_minutes(m) for m in minutes):
        raise SettingsError("Durations must be positive whole minutes")
    durations = {h: list(m) for h, m in settings.domain_durations.items()}
    durations[host] = sorted(set(minutes))
    return replace(settings, domain_durations=durations)


def add_window(settings: Settings, day: int, start: str, end: str) -> Settings:
    try:
        window = BlockWindow(day=day, start=start, end=end)
    except ValueError as e:
        raise SettingsError(str(e)) from e
    if window in settings.windows:
        return settings
    return replace(settings, windows=settings.windows + [window])


def remove_window(settings: Settings, index: int) -> Settings:
    if not 0 <= index < len(settings.windows):
        raise SettingsError(f"No window at index {index}")
    windows = list(settings.windows)
    del windows[index]
    return replace(settings, windows=windows)


def start_focus(settings: Settings, hours: float, now: int) -> Settings:
    if hours <= 0:
        raise SettingsError("Focus hours must be positive")
    return replace(
        settings,
        mode=MODE_FOCUS,
        focus_time_hours=hours,
        focus_timer=countdown.start(int(hours * HOUR_MS), now),
    )


def stop_focus(settings: Settings) -> Settings:
    return replace(settings, mode=MODE_SCHEDULED, focus_timer=INACTIVE)


def set_mode(settings: Settings, mode: str) -> Settings:
    if mode not in MODES:
        raise SettingsError(f"Unknown mode {mode!r}, expected one of {', '.join(MODES)}")
    if mode == MODE_SCHEDULED:
        return stop_focus(settings)
    return replace(settings, mode=mode)


def set_enabled(settings: Settings, enabled: bool) -> Settings:
    return replace(settings, enabled=bool(enabled))


class SettingsStore:
    """Loads and saves the settings record in the sync partition."""

    def __init__(self, storage: Storage):
        self.partition = storage.sync

    def load(self) -> Settings:
        try:
            return Settings.from_dict(self.partition.get(SETTINGS_KEY))
        except StorageError as e:
            logger.warning("Settings unavailable, using defaults: %s", e)
            return Settings()

    def save(self, settings: Settings) -> None:
        self.partition.set(SETTINGS_KEY, settings.to_dict())

    def update(self, change: Callable[[Settings], Settings]) -> Settings:
        settings = change(self.load())
        self.save(settings)
        return settings

    def reset(self) -> None:
        """Forget the saved record so every reader sees the defaults."""
        self.partition.remove(SETTINGS_KEY)

    def on_changed(self, callback: Callable[[Settings, Settings], None]) -> None:
        def _relay(new, old):
            callback(Settings.from_dict(new), Settings.from_dict(old))

        self.partition.on_changed(SETTINGS_KEY, _relay)
