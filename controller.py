"""
Mode and blocking controller.

Combines the settings record and the unblock ledger to decide whether
blocking is active, closes browsing contexts on blocked hosts, and arms a
single wake timer for the next moment the decision can change. Nothing is
kept in memory between events: every trigger recomputes from storage.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from alarms import AlarmService
from config import (
    BOUNDARY_ALARM,
    CLEANUP_ALARM,
    CLEANUP_PERIOD_MINUTES,
    ENFORCE_RETRY_DELAY,
    FALLBACK_RECHECK_MS,
    FOCUS_PAUSED_RECHECK_MS,
    MODE_FOCUS,
    REROLL_RESET_ALARM,
    SELECTION_EXPIRY_ALARM,
)
from contexts import BrowsingContext, ContextError, ContextHost
from countdown import Paused, Running
from domains import matches_any
from ledger import UnblockLedger, covers
from messaging import (
    CANCEL_REROLL_RESET,
    CANCEL_TEMPORARY_UNBLOCK,
    CLEAR_TEMPORARY_UNBLOCKS,
    GET_ACTIVE_UNBLOCKS,
    SCHEDULE_REROLL_RESET,
    SCHEDULE_SELECTION_EXPIRY,
    TEMPORARY_UNBLOCK,
    MessageRouter,
)
from scheduler import is_within_any_window, next_boundary_after, now_ms, to_datetime, to_ms
from settings import Settings, SettingsStore, stop_focus
from storage import StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    should_block: bool
    next_check: int
    # The focus session has run out and the mode should flip back to scheduled
    focus_expired: bool = False


def decide(now: int, settings: Settings) -> Decision:
    """
    Decide whether blocking is active at `now` and when to check again.

    Focus mode blocks while the focus countdown runs and never while it is
    paused. Scheduled mode blocks inside the weekly windows.
    """
    if settings.mode == MODE_FOCUS:
        timer = settings.focus_timer
        if isinstance(timer, Paused):
            return Decision(False, now + FOCUS_PAUSED_RECHECK_MS)
        if isinstance(timer, Running):
            return Decision(
                should_block=settings.enabled and now < timer.ends_at,
                next_check=min(timer.ends_at, now + FALLBACK_RECHECK_MS),
                focus_expired=timer.ends_at <= now,
            )
        return Decision(False, now + FALLBACK_RECHECK_MS)

    moment = to_datetime(now)
    next_check = to_ms(next_boundary_after(moment, settings.windows))
    return Decision(
        should_block=settings.enabled and is_within_any_window(moment, settings.windows),
        next_check=max(next_check, now + 1),
    )


def status_message(now: int, settings: Settings) -> str:
    """Get a human-readable status message about blocking state."""
    decision = decide(now, settings)
    state = "ACTIVE" if decision.should_block else "INACTIVE"
    next_check = to_datetime(decision.next_check).strftime("%a %H:%M")

    if not settings.enabled:
        reason = "Blocking is switched off."
    elif settings.mode == MODE_FOCUS:
        timer = settings.focus_timer
        if isinstance(timer, Paused):
            reason = f"Focus time paused with {timer.remaining // 60000} min left - card timer is active."
        elif isinstance(timer, Running) and timer.ends_at > now:
            reason = f"Focus time active, {timer.remaining(now) // 60000} min left."
        else:
            reason = "Focus mode selected but no focus time is running."
    else:
        windows = ", ".join(str(w) for w in settings.windows) or "none"
        reason = f"Scheduled windows: {windows}."

    return f"Blocking is {state}. {reason} Next check: {next_check}."


class BlockingController:
    def __init__(
        self,
        settings: SettingsStore,
        ledger: UnblockLedger,
        alarms: AlarmService,
        contexts: ContextHost,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.ledger = ledger
        self.alarms = alarms
        self.contexts = contexts
        self.clock = clock
        self.sleep = sleep

    def start(self) -> Optional[Decision]:
        """Hook up event sources and run the first decision (process start)."""
        self.settings.on_changed(self._on_settings_changed)
        self.contexts.on_navigation_completed(self.on_navigation_completed)
        self.alarms.add_listener(self.on_alarm)
        if self.alarms.get(CLEANUP_ALARM) is None:
            self.alarms.create(CLEANUP_ALARM, period_minutes=CLEANUP_PERIOD_MINUTES)
        return self.update()

    def update(self) -> Optional[Decision]:
        """Recompute the decision, enforce it and re-arm the boundary alarm."""
        try:
            now = self.clock()
            settings = self.settings.load()
            decision = decide(now, settings)

            if decision.focus_expired:
                logger.info("Focus time ended, switching back to scheduled mode")
                settings = stop_focus(settings)
                self.settings.save(settings)
                decision = decide(now, settings)

            logger.debug(
                "update: mode=%s enabled=%s should_block=%s hosts=%d",
                settings.mode,
                settings.enabled,
                decision.should_block,
                len(settings.blocked_hosts),
            )
            self.enforce(decision.should_block, settings.blocked_hosts)

            self.alarms.create(BOUNDARY_ALARM, when=decision.next_check)
            logger.debug("Next check scheduled for %s", to_datetime(decision.next_check))
            return decision
        except StorageError as e:
            logger.error("Error updating blocking and alarm: %s", e)
            return None

    def enforce(self, should_block: bool, blocked_hosts: Iterable[str]) -> int:
        """Close contexts on blocked hosts. Returns how many were closed."""
        blocked_hosts = list(blocked_hosts)
        if not should_block or not blocked_hosts:
            logger.debug("Context closing disabled")
            return 0
        return self._with_retry(lambda: self._close_blocked(blocked_hosts), "closing blocked contexts")

    def _close_blocked(self, blocked_hosts) -> int:
        now = self.clock()
        exemptions = self.ledger.get_active(now)
        to_close = []
        for context in self.contexts.query():
            if not context.url or not matches_any(context.url, blocked_hosts):
                continue
            if covers(exemptions, context.url, now):
                logger.debug("Context not closed - temporarily unblocked: %s", context.url)
                continue
            logger.debug("Closing blocked context: %s (id %s)", context.url, context.id)
            to_close.append(context.id)
        if to_close:
            self.contexts.close(to_close)
            logger.info("Closed %d blocked context(s)", len(to_close))
        return len(to_close)

    def _with_retry(self, action: Callable[[], int], description: str) -> int:
        try:
            return action()
        except ContextError as e:
            logger.warning("Error %s, retrying: %s", description, e)
        self.sleep(ENFORCE_RETRY_DELAY)
        try:
            return action()
        except ContextError as e:
            logger.error("Retry also failed %s: %s", description, e)
            return 0

    def is_host_blocked(self, host: str, now: Optional[int] = None) -> bool:
        """Check if `host` must be refused right now."""
        now = self.clock() if now is None else now
        settings = self.settings.load()
        if not decide(now, settings).should_block:
            return False
        if not matches_any(host, settings.blocked_hosts):
            return False
        return not self.ledger.is_temporarily_unblocked(host, now)

    def on_navigation_completed(self, context: BrowsingContext) -> None:
        if not context.url or not self.is_host_blocked(context.url):
            return
        logger.debug("Blocked site detected in navigation: %s", context.url)

        def _close() -> int:
            # Re-query so a context that is already gone is not retried
            if all(c.id != context.id for c in self.contexts.query()):
                return 0
            self.contexts.close([context.id])
            return 1

        self._with_retry(_close, f"closing {context.url}")

    def on_alarm(self, name: str) -> None:
        if name == BOUNDARY_ALARM:
            self.update()
        elif name == CLEANUP_ALARM:
            self.ledger.cleanup_expired()

    def _on_settings_changed(self, new: Settings, old: Settings) -> None:
        self.update()

    # Message handlers

    def register_handlers(self, router: MessageRouter) -> None:
        router.register(TEMPORARY_UNBLOCK, self._handle_temporary_unblock)
        router.register(CANCEL_TEMPORARY_UNBLOCK, self._handle_cancel_unblock)
        router.register(GET_ACTIVE_UNBLOCKS, self._handle_get_active_unblocks)
        router.register(CLEAR_TEMPORARY_UNBLOCKS, self._handle_clear_unblocks)
        router.register(SCHEDULE_REROLL_RESET, self._handle_schedule_reroll_reset)
        router.register(CANCEL_REROLL_RESET, self._handle_cancel_reroll_reset)
        router.register(SCHEDULE_SELECTION_EXPIRY, self._handle_schedule_selection_expiry)

    def _handle_temporary_unblock(self, message: dict) -> dict:
        self.ledger.add(message["domain"], message["expires_at"])
        return {"success": True}

    def _handle_cancel_unblock(self, message: dict) -> dict:
        self.ledger.remove(message["domain"])
        self.update()
        return {"success": True}

    def _handle_get_active_unblocks(self, message: dict) -> dict:
        return {"success": True, "unblocks": [u.to_dict() for u in self.ledger.get_active()]}

    def _handle_clear_unblocks(self, message: dict) -> dict:
        self.ledger.clear()
        return {"success": True}

    def _handle_schedule_reroll_reset(self, message: dict) -> dict:
        self.alarms.create(REROLL_RESET_ALARM, when=message["reset_time"])
        return {"success": True}

    def _handle_cancel_reroll_reset(self, message: dict) -> dict:
        self.alarms.clear(REROLL_RESET_ALARM)
        logger.debug("Reroll reset alarm canceled")
        return {"success": True}

    def _handle_schedule_selection_expiry(self, message: dict) -> dict:
        self.alarms.create(SELECTION_EXPIRY_ALARM, when=message["expires_at"])
        return {"success": True}
