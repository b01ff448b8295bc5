import pytest

from alarms import AlarmService
from config import (
    BOUNDARY_ALARM,
    CLEANUP_ALARM,
    HOUR_MS,
    MINUTE_MS,
    MODE_FOCUS,
    MODE_SCHEDULED,
    REROLL_RESET_ALARM,
    SELECTION_EXPIRY_ALARM,
)
from conftest import MONDAY_10AM, local_ms
from controller import BlockingController, decide, status_message
from countdown import INACTIVE, Paused, Running
from ledger import UnblockLedger
from messaging import BackgroundClient, MessageRouter
from scheduler import BlockWindow
from settings import Settings, SettingsStore, add_window
from storage import StorageError

WORKDAY = [BlockWindow(day=1, start="09:00", end="17:00")]


def scheduled(**kwargs):
    values = dict(mode=MODE_SCHEDULED, windows=WORKDAY, enabled=True, blocked_hosts=["x.com"])
    values.update(kwargs)
    return Settings(**values)


@pytest.fixture
def store(storage):
    return SettingsStore(storage)


@pytest.fixture
def ledger(storage, clock):
    return UnblockLedger(storage, clock=clock)


@pytest.fixture
def alarms(storage, clock):
    return AlarmService(storage, clock=clock)


@pytest.fixture
def controller(store, ledger, alarms, contexts, clock, sleep):
    return BlockingController(store, ledger, alarms, contexts, clock=clock, sleep=sleep)


def test_scheduled_window_blocks_until_its_end():
    decision = decide(MONDAY_10AM, scheduled())
    assert decision.should_block
    assert decision.next_check == local_ms(2024, 1, 1, 17, 0)


def test_scheduled_outside_window():
    decision = decide(local_ms(2024, 1, 1, 18, 0), scheduled())
    assert not decision.should_block
    assert decision.next_check == local_ms(2024, 1, 8, 9, 0)


def test_disabled_never_blocks():
    assert not decide(MONDAY_10AM, scheduled(enabled=False)).should_block


def test_focus_running_blocks_until_end():
    end = MONDAY_10AM + 2 * HOUR_MS
    decision = decide(MONDAY_10AM, Settings(mode=MODE_FOCUS, focus_timer=Running(end)))
    assert decision.should_block
    assert decision.next_check == end
    assert not decision.focus_expired


def test_focus_paused_never_blocks():
    decision = decide(MONDAY_10AM, Settings(mode=MODE_FOCUS, focus_timer=Paused(HOUR_MS)))
    assert not decision.should_block
    assert decision.next_check == MONDAY_10AM + MINUTE_MS


def test_focus_without_timer_does_not_block():
    assert not decide(MONDAY_10AM, Settings(mode=MODE_FOCUS, focus_timer=INACTIVE)).should_block


def test_focus_session_ends_and_flips_to_scheduled(controller, store, clock):
    store.save(Settings(mode=MODE_FOCUS, windows=[], focus_timer=Running(clock() + 2 * HOUR_MS)))
    assert controller.update().should_block

    clock.advance(2 * HOUR_MS)
    decision = controller.update()
    assert not decision.should_block
    settings = store.load()
    assert settings.mode == MODE_SCHEDULED
    assert settings.focus_timer is INACTIVE


def test_update_arms_boundary_alarm(controller, store, alarms):
    store.save(scheduled())
    decision = controller.update()
    assert alarms.get(BOUNDARY_ALARM).when == decision.next_check


def test_update_closes_blocked_contexts(controller, store, contexts):
    store.save(scheduled())
    blocked = contexts.open("https://www.x.com/home")
    allowed = contexts.open("https://example.org")
    controller.update()
    assert contexts.get(blocked.id) is None
    assert contexts.get(allowed.id) is not None


def test_temporarily_unblocked_contexts_stay_open(controller, store, ledger, contexts, clock):
    store.save(scheduled())
    ledger.add("x.com", clock() + 10 * MINUTE_MS)
    context = contexts.open("https://m.x.com/")
    controller.update()
    assert contexts.get(context.id) is not None


def test_close_is_retried_once(controller, store, contexts, sleep):
    store.save(scheduled())
    context = contexts.open("https://x.com")
    contexts.fail_next_closes = 1
    assert controller.enforce(True, ["x.com"]) == 1
    assert sleep.calls == [0.1]
    assert contexts.get(context.id) is None


def test_close_gives_up_after_retry(controller, contexts, sleep):
    context = contexts.open("https://x.com")
    contexts.fail_next_closes = 2
    assert controller.enforce(True, ["x.com"]) == 0
    assert contexts.close_calls == 2
    assert contexts.get(context.id) is not None


def test_navigation_to_blocked_host_is_closed(controller, store, contexts):
    store.save(scheduled())
    controller.start()
    context = contexts.open("https://x.com/explore")
    assert contexts.get(context.id) is None
    assert contexts.get(contexts.open("https://example.org").id) is not None


def test_navigation_outside_window_is_allowed(controller, store, contexts, clock):
    clock.now = local_ms(2024, 1, 2, 10, 0)
    store.save(scheduled())
    controller.start()
    assert contexts.get(contexts.open("https://x.com").id) is not None


def test_start_creates_cleanup_alarm_once(controller, alarms):
    controller.start()
    first = alarms.get(CLEANUP_ALARM)
    controller.start()
    assert alarms.get(CLEANUP_ALARM) == first


def test_settings_change_triggers_update(controller, store, contexts, clock):
    clock.now = local_ms(2024, 1, 2, 10, 0)
    store.save(scheduled())
    controller.start()
    context = contexts.open("https://x.com")
    store.update(lambda s: add_window(s, 2, "09:00", "17:00"))
    assert contexts.get(context.id) is None


def test_cleanup_alarm_compacts_ledger(controller, ledger, storage, clock):
    ledger.add("x.com", clock() + MINUTE_MS)
    clock.advance(MINUTE_MS)
    controller.on_alarm(CLEANUP_ALARM)
    assert storage.local.get("temporary_unblocks") == []


def test_is_host_blocked(controller, store, ledger, clock):
    store.save(scheduled())
    assert controller.is_host_blocked("api.x.com")
    assert not controller.is_host_blocked("example.org")
    ledger.add("x.com", clock() + MINUTE_MS)
    assert not controller.is_host_blocked("api.x.com")


def test_storage_failure_is_logged_not_raised(controller, alarms, monkeypatch):
    def broken(*args, **kwargs):
        raise StorageError("disk full")

    monkeypatch.setattr(alarms, "create", broken)
    assert controller.update() is None


def test_status_message():
    message = status_message(MONDAY_10AM, scheduled())
    assert message.startswith("Blocking is ACTIVE.")
    assert "Mon 09:00 - 17:00" in message

    paused = status_message(MONDAY_10AM, Settings(mode=MODE_FOCUS, focus_timer=Paused(30 * MINUTE_MS)))
    assert "Blocking is INACTIVE." in paused
    assert "30 min left" in paused


def test_message_handlers(controller, store, alarms, clock):
    router = MessageRouter()
    controller.register_handlers(router)
    client = BackgroundClient(router)
    store.save(scheduled())

    expires = clock() + 10 * MINUTE_MS
    assert client.add_unblock("x.com", expires)
    assert [(u.domain, u.expires_at) for u in client.active_unblocks()] == [("x.com", expires)]
    assert client.cancel_unblock("x.com")
    assert client.active_unblocks() == []

    client.add_unblock("x.com", expires)
    assert client.clear_unblocks()
    assert client.active_unblocks() == []

    assert client.schedule_reroll_reset(expires)
    assert alarms.get(REROLL_RESET_ALARM).when == expires
    assert client.cancel_reroll_reset()
    assert alarms.get(REROLL_RESET_ALARM) is None


def test_cancel_unblock_closes_now_blocked_context(controller, store, ledger, contexts, clock):
    router = MessageRouter()
    controller.register_handlers(router)
    store.save(scheduled())
    ledger.add("x.com", clock() + 10 * MINUTE_MS)
    context = contexts.open("https://x.com")
    BackgroundClient(router).cancel_unblock("x.com")
    assert contexts.get(context.id) is None


def test_selection_expiry_handler_arms_alarm(controller, alarms, clock):
    router = MessageRouter()
    controller.register_handlers(router)
    assert BackgroundClient(router).schedule_selection_expiry(clock() + MINUTE_MS)
    assert alarms.get(SELECTION_EXPIRY_ALARM).when == clock() + MINUTE_MS
