"""
Card gamble for temporary unblocks.

While a focus session is on, a reroll countdown runs. When it runs out the
focus timer is paused and three cards are drawn: each card either exempts a
blocked host for some minutes or grants a bonus reroll. The user may reroll
single cards while the budget lasts, then picks one domain card. That locks
the cards until the exemption ends (or is cancelled), after which the focus
timer resumes and the countdown starts again.

Phases:
    INACTIVE           no focus session: no cards, locked, no countdown
    COUNTDOWN_RUNNING  waiting for the next round
    SELECTABLE         three cards drawn and unlocked
    LOCKED             a domain card was chosen and its exemption is running

Transitions are pure functions of (state, settings, now, rng) returning a
Transition: the new state, the new focus timer (if it changes) and the
messages to send to the background controller. RerollMachine loads the
persisted state, applies a transition and saves the result.
"""

from __future__ import annotations

import enum
import logging
import random
import threading
from dataclasses import dataclass, field, replace
from typing import Callable, List, NamedTuple, Optional

import countdown
from config import (
    BONUS_CARD_PROBABILITY,
    BONUS_REROLL_AMOUNT,
    CARD_COUNT,
    CLEANUP_ALARM,
    DEFAULT_MAX_UNBLOCK_MINUTES,
    DEFAULT_MIN_UNBLOCK_MINUTES,
    INITIAL_REROLLS,
    MAX_AVAILABLE_REROLLS,
    MINUTE_MS,
    REROLL_COUNTDOWN_MAX_MINUTES,
    REROLL_COUNTDOWN_MIN_MINUTES,
    REROLL_RESET_ALARM,
    REROLL_STATE_KEY,
    SELECTION_EXPIRY_ALARM,
)
from countdown import INACTIVE, Countdown, Paused, Running
from messaging import (
    CANCEL_REROLL_RESET,
    CANCEL_TEMPORARY_UNBLOCK,
    CLEAR_TEMPORARY_UNBLOCKS,
    SCHEDULE_REROLL_RESET,
    SCHEDULE_SELECTION_EXPIRY,
    TEMPORARY_UNBLOCK,
    MessageRouter,
)
from scheduler import now_ms
from settings import Settings, SettingsStore
from storage import Storage, StorageError

logger = logging.getLogger(__name__)

DOMAIN = "domain"
BONUS_REROLL = "bonus_reroll"

RESET_END_KEY = "reroll_reset_time"
RESET_PAUSED_KEY = "reroll_reset_time_paused"


class RerollError(ValueError):
    """The requested card action is not allowed right now."""


class Phase(enum.Enum):
    INACTIVE = "inactive"
    COUNTDOWN_RUNNING = "countdown_running"
    SELECTABLE = "selectable"
    LOCKED = "locked"


@dataclass(frozen=True)
class CardOption:
    kind: str
    domain: Optional[str] = None
    duration_minutes: Optional[int] = None
    amount: Optional[int] = None

    @classmethod
    def for_domain(cls, domain: str, duration_minutes: int) -> "CardOption":
        return cls(kind=DOMAIN, domain=domain, duration_minutes=duration_minutes)

    @classmethod
    def bonus(cls, amount: int = BONUS_REROLL_AMOUNT) -> "CardOption":
        return cls(kind=BONUS_REROLL, amount=amount)

    @classmethod
    def from_dict(cls, data: dict) -> "CardOption":
        kind = data["kind"]
        if kind == DOMAIN:
            minutes = int(data["duration_minutes"])
            if minutes <= 0:
                raise ValueError(f"Invalid card duration {minutes}")
            return cls.for_domain(str(data["domain"]), minutes)
        if kind == BONUS_REROLL:
            return cls.bonus(int(data["amount"]))
        raise ValueError(f"Unknown card kind {kind!r}")

    def to_dict(self) -> dict:
        if self.kind == DOMAIN:
            return {"kind": DOMAIN, "domain": self.domain, "duration_minutes": self.duration_minutes}
        return {"kind": BONUS_REROLL, "amount": self.amount}

    def __str__(self) -> str:
        if self.kind == DOMAIN:
            unit = "minute" if self.duration_minutes == 1 else "minutes"
            return f"{self.domain} for {self.duration_minutes} {unit}"
        return f"bonus re-roll +{self.amount}"


@dataclass
class RerollState:
    available_rerolls: int = 0
    reset_timer: Countdown = INACTIVE
    cards: List[CardOption] = field(default_factory=list)
    selected_card: Optional[int] = None
    cards_locked: bool = True
    selected_card_expires_at: Optional[int] = None

    @property
    def phase(self) -> Phase:
        if self.selected_card is not None:
            return Phase.LOCKED
        if self.cards and not self.cards_locked:
            return Phase.SELECTABLE
        if countdown.is_active(self.reset_timer):
            return Phase.COUNTDOWN_RUNNING
        return Phase.INACTIVE

    @property
    def selected(self) -> Optional[CardOption]:
        if self.selected_card is None or not 0 <= self.selected_card < len(self.cards):
            return None
        return self.cards[self.selected_card]

    @classmethod
    def from_dict(cls, data) -> Optional["RerollState"]:
        """Decode a persisted state. Returns None if it is malformed."""
        if not isinstance(data, dict):
            return None
        try:
            rerolls = data.get("available_rerolls", 0)
            if isinstance(rerolls, bool) or not isinstance(rerolls, int) or rerolls < 0:
                raise ValueError(f"Invalid reroll budget {rerolls!r}")
            cards = [CardOption.from_dict(c) for c in data.get("cards") or []]
            if cards and len(cards) != CARD_COUNT:
                raise ValueError(f"Expected {CARD_COUNT} cards, got {len(cards)}")
            selected = data.get("selected_card")
            if selected is not None and (
                not isinstance(selected, int) or not 0 <= selected < len(cards)
            ):
                raise ValueError(f"Invalid selected card {selected!r}")
            expires_at = data.get("selected_card_expires_at")
            return cls(
                available_rerolls=rerolls,
                reset_timer=countdown.from_fields(data, RESET_END_KEY, RESET_PAUSED_KEY),
                cards=cards,
                selected_card=selected,
                cards_locked=bool(data.get("cards_locked", True)),
                selected_card_expires_at=int(expires_at) if expires_at is not None else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring malformed reroll state: %s", e)
            return None

    def to_dict(self) -> dict:
        data = {
            "available_rerolls": self.available_rerolls,
            "cards": [c.to_dict() for c in self.cards],
            "selected_card": self.selected_card,
            "cards_locked": self.cards_locked,
            "selected_card_expires_at": self.selected_card_expires_at,
        }
        data.update(countdown.to_fields(self.reset_timer, RESET_END_KEY, RESET_PAUSED_KEY))
        return data


class Transition(NamedTuple):
    state: RerollState
    # New focus timer, or None to leave it alone
    focus_timer: Optional[Countdown] = None
    messages: tuple = ()


def generate_random_option(domains, domain_durations, rng: random.Random) -> CardOption:
    """
    Draw one card.

    Without domains the card is always a bonus reroll. Otherwise a bonus
    reroll comes up with BONUS_CARD_PROBABILITY; the rest of the time a
    domain is picked uniformly, with a duration picked uniformly from its
    configured list or, if it has none, from DEFAULT_MIN..MAX_UNBLOCK_MINUTES.
    """
    if not domains:
        return CardOption.bonus()
    if rng.random() < BONUS_CARD_PROBABILITY:
        return CardOption.bonus()
    domain = rng.choice(list(domains))
    durations = domain_durations.get(domain) or []
    if durations:
        minutes = rng.choice(list(durations))
    else:
        minutes = rng.randint(DEFAULT_MIN_UNBLOCK_MINUTES, DEFAULT_MAX_UNBLOCK_MINUTES)
    return CardOption.for_domain(domain, minutes)


def draw_cards(settings: Settings, rng: random.Random) -> List[CardOption]:
    return [
        generate_random_option(settings.blocked_hosts, settings.domain_durations, rng)
        for _ in range(CARD_COUNT)
    ]


def new_countdown(now: int, rng: random.Random) -> Running:
    minutes = rng.randint(REROLL_COUNTDOWN_MIN_MINUTES, REROLL_COUNTDOWN_MAX_MINUTES)
    return countdown.start(minutes * MINUTE_MS, now)


def _schedule(timer: Running) -> dict:
    return {"action": SCHEDULE_REROLL_RESET, "reset_time": timer.ends_at}


_CANCEL_RESET = {"action": CANCEL_REROLL_RESET}


def _inactive(state: RerollState) -> RerollState:
    return replace(
        state,
        available_rerolls=0,
        reset_timer=INACTIVE,
        cards=[],
        selected_card=None,
        cards_locked=True,
        selected_card_expires_at=None,
    )


def activate(state: RerollState, now: int, rng: random.Random) -> Transition:
    """Focus session started: begin the first countdown."""
    if state.phase is not Phase.INACTIVE:
        return Transition(state)
    timer = new_countdown(now, rng)
    new = replace(_inactive(state), reset_timer=timer)
    logger.debug("Reroll countdown started, ends at %s", timer.ends_at)
    return Transition(new, messages=(_schedule(timer),))


def deactivate(state: RerollState) -> Transition:
    """Focus session ended. A locked card is left to run out on its own."""
    if state.phase is Phase.LOCKED:
        return Transition(state)
    new = _inactive(state)
    if new == state:
        return Transition(state)
    messages = (_CANCEL_RESET,) if countdown.is_active(state.reset_timer) else ()
    return Transition(new, messages=messages)


def expire_countdown(
    state: RerollState, settings: Settings, now: int, rng: random.Random
) -> Transition:
    """Countdown ran out: pause the focus timer and deal a fresh round."""
    if not countdown.is_expired(state.reset_timer, now):
        return Transition(state)
    new = replace(
        state,
        available_rerolls=INITIAL_REROLLS,
        reset_timer=INACTIVE,
        cards=draw_cards(settings, rng),
        selected_card=None,
        cards_locked=False,
        selected_card_expires_at=None,
    )
    focus_timer = None
    # An overdue focus timer is left for the controller to end
    if isinstance(settings.focus_timer, Running) and not countdown.is_expired(settings.focus_timer, now):
        focus_timer = countdown.pause(settings.focus_timer, now)
    return Transition(new, focus_timer=focus_timer)


def _check_index(state: RerollState, index: int) -> None:
    if not isinstance(index, int) or not 0 <= index < len(state.cards):
        raise RerollError(f"No card at position {index}")


def reroll_card(
    state: RerollState, index: int, settings: Settings, rng: random.Random
) -> Transition:
    if state.phase is not Phase.SELECTABLE:
        raise RerollError("Cards cannot be re-rolled right now")
    if state.available_rerolls <= 0:
        raise RerollError("No re-rolls left")
    _check_index(state, index)
    cards = list(state.cards)
    cards[index] = generate_random_option(settings.blocked_hosts, settings.domain_durations, rng)
    return Transition(replace(state, cards=cards, available_rerolls=state.available_rerolls - 1))


def select_card(
    state: RerollState, index: int, settings: Settings, now: int, rng: random.Random
) -> Transition:
    if state.phase is not Phase.SELECTABLE:
        raise RerollError("Cards are locked")
    _check_index(state, index)
    card = state.cards[index]

    if card.kind == BONUS_REROLL:
        cards = list(state.cards)
        cards[index] = generate_random_option(settings.blocked_hosts, settings.domain_durations, rng)
        rerolls = min(MAX_AVAILABLE_REROLLS, state.available_rerolls + card.amount)
        return Transition(replace(state, cards=cards, available_rerolls=rerolls))

    expires_at = now + card.duration_minutes * MINUTE_MS
    messages = [
        {"action": TEMPORARY_UNBLOCK, "domain": card.domain, "expires_at": expires_at},
        {"action": SCHEDULE_SELECTION_EXPIRY, "expires_at": expires_at},
    ]
    timer = state.reset_timer
    if isinstance(timer, Running):
        timer = countdown.pause(timer, now)
        messages.append(_CANCEL_RESET)
    new = replace(
        state,
        available_rerolls=0,
        reset_timer=timer,
        selected_card=index,
        cards_locked=True,
        selected_card_expires_at=expires_at,
    )
    return Transition(new, messages=tuple(messages))


def release_card(
    state: RerollState, settings: Settings, now: int, rng: random.Random, cancel: bool = False
) -> Transition:
    """
    End the locked card's exemption, by expiry or by `cancel`.

    Resumes the focus timer and restarts the reroll countdown from its paused
    remainder, or with a fresh duration if nothing was paused.
    """
    if state.phase is not Phase.LOCKED:
        return Transition(state)
    expires_at = state.selected_card_expires_at
    if not cancel and expires_at is not None and expires_at > now:
        return Transition(state)

    messages = []
    card = state.selected
    if cancel and card is not None and card.kind == DOMAIN:
        messages.append({"action": CANCEL_TEMPORARY_UNBLOCK, "domain": card.domain})

    focus_timer = countdown.resume(settings.focus_timer, now)
    if replace(settings, focus_timer=focus_timer).focus_active:
        if isinstance(state.reset_timer, Paused):
            timer = countdown.resume(state.reset_timer, now)
        else:
            timer = new_countdown(now, rng)
        messages.append(_schedule(timer))
        new = replace(_inactive(state), reset_timer=timer)
    else:
        new = _inactive(state)
        if countdown.is_active(state.reset_timer):
            messages.append(_CANCEL_RESET)

    changed_focus = focus_timer if focus_timer != settings.focus_timer else None
    return Transition(new, focus_timer=changed_focus, messages=tuple(messages))


def reset(settings: Settings, rng: random.Random) -> Transition:
    """Settings were reset to defaults: drop everything and deal a fresh hand."""
    cards = draw_cards(settings, rng) if settings.blocked_hosts else []
    new = RerollState(
        available_rerolls=INITIAL_REROLLS,
        reset_timer=INACTIVE,
        cards=cards,
        selected_card=None,
        cards_locked=not cards,
        selected_card_expires_at=None,
    )
    return Transition(
        new, messages=(_CANCEL_RESET, {"action": CLEAR_TEMPORARY_UNBLOCKS})
    )


class RerollMachine:
    """
    Persisted card gamble driven by user actions, timers and settings changes.

    Any number of machines may share one storage (a long-lived background one
    and short-lived UI ones); each reloads state before every transition.
    """

    def __init__(
        self,
        storage: Storage,
        settings: SettingsStore,
        router: MessageRouter,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.partition = storage.local
        self.settings = settings
        self.router = router
        self.rng = rng or random.Random()
        self.clock = clock
        self._lock = threading.RLock()
        self._cards_ready: List[Callable[[RerollState], None]] = []

    def on_cards_ready(self, callback: Callable[[RerollState], None]) -> None:
        """Call `callback` whenever a new round of cards becomes selectable."""
        self._cards_ready.append(callback)

    def load(self) -> RerollState:
        try:
            raw = self.partition.get(REROLL_STATE_KEY)
        except StorageError as e:
            logger.warning("Reroll state unavailable: %s", e)
            return RerollState()
        return RerollState.from_dict(raw) or RerollState()

    def save(self, state: RerollState) -> None:
        self.partition.set(REROLL_STATE_KEY, state.to_dict())

    def _apply(self, transition: Transition, before: Phase) -> RerollState:
        state = transition.state
        self.save(state)
        if transition.focus_timer is not None:
            self.settings.update(lambda s: replace(s, focus_timer=transition.focus_timer))
        for message in transition.messages:
            self.router.send(message)
        if state.phase is Phase.SELECTABLE and before is not Phase.SELECTABLE:
            logger.info("New cards are ready: %s", "; ".join(str(c) for c in state.cards))
            for callback in list(self._cards_ready):
                callback(state)
        return state

    def _run(self, step: Callable[[RerollState, Settings, int], Transition]) -> RerollState:
        with self._lock:
            state = self.load()
            transition = step(state, self.settings.load(), self.clock())
            if transition.state == state and transition.focus_timer is None and not transition.messages:
                return state
            return self._apply(transition, state.phase)

    def attach(self) -> RerollState:
        """Subscribe to settings changes and catch up with anything missed."""
        self.settings.on_changed(self.on_settings_changed)
        state = self.tick()
        settings = self.settings.load()
        if settings.focus_active and state.phase is Phase.INACTIVE:
            state = self.activate()
        elif not settings.focus_active and state.phase is Phase.COUNTDOWN_RUNNING:
            state = self.deactivate()
        elif isinstance(state.reset_timer, Running):
            # The wake timer may have been lost while no controller ran
            self.router.send(_schedule(state.reset_timer))
        if state.phase is Phase.LOCKED and state.selected_card_expires_at is not None:
            self.router.send(
                {"action": SCHEDULE_SELECTION_EXPIRY, "expires_at": state.selected_card_expires_at}
            )
        return state

    def activate(self) -> RerollState:
        return self._run(lambda state, settings, now: activate(state, now, self.rng))

    def deactivate(self) -> RerollState:
        return self._run(lambda state, settings, now: deactivate(state))

    def on_settings_changed(self, new: Settings, old: Settings) -> None:
        if new.focus_active and not old.focus_active:
            self.activate()
        elif old.focus_active and not new.focus_active:
            self.deactivate()

    def expire_countdown(self) -> RerollState:
        return self._run(lambda state, settings, now: expire_countdown(state, settings, now, self.rng))

    def expire_selection(self) -> RerollState:
        return self._run(lambda state, settings, now: release_card(state, settings, now, self.rng))

    def tick(self) -> RerollState:
        """Apply any countdown or selection expiry that is overdue."""
        self.expire_countdown()
        return self.expire_selection()

    def on_alarm(self, name: str) -> None:
        if name == REROLL_RESET_ALARM:
            logger.info("Reroll countdown expired")
            self.expire_countdown()
        elif name == SELECTION_EXPIRY_ALARM:
            self.expire_selection()
        elif name == CLEANUP_ALARM:
            self.tick()

    def reroll(self, index: int) -> RerollState:
        return self._run(lambda state, settings, now: reroll_card(state, index, settings, self.rng))

    def select(self, index: int) -> RerollState:
        return self._run(lambda state, settings, now: select_card(state, index, settings, now, self.rng))

    def cancel_selection(self) -> RerollState:
        with self._lock:
            if self.load().phase is not Phase.LOCKED:
                raise RerollError("No card is selected")
            return self._run(
                lambda state, settings, now: release_card(state, settings, now, self.rng, cancel=True)
            )

    def reset(self) -> RerollState:
        """Reset settings to defaults and start the gamble over."""
        with self._lock:
            self.settings.reset()
            before = self.load().phase
            return self._apply(reset(self.settings.load(), self.rng), before)
