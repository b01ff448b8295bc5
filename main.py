"""CLI entry point for Focus Gamble."""

import logging
import signal
import sys

from background import Background
from config import LOG_FORMAT, LOG_LEVEL
from controller import status_message
from countdown import Running
from dns_server import IS_WINDOWS, FocusBlockerDNS
from reroll import Phase, RerollError
from scheduler import now_ms, to_datetime
from settings import (
    SettingsError,
    add_host,
    add_window,
    remove_host,
    remove_window,
    set_durations,
    set_enabled,
    set_mode,
    start_focus,
    stop_focus,
)
from storage import Storage, StorageError

ELEVATION_CMD = "Run as Administrator" if IS_WINDOWS else "sudo python"


def print_usage():
    """Print usage information."""
    print(
        f"""Focus Gamble - Block distracting websites, gamble for breaks

Usage:
    python main.py <command> [arguments]

Commands:
    start                           Run the blocker and DNS server (foreground)
    status                          Show current blocking status
    focus <hours>                   Start a focus session
    stop-focus                      End the focus session
    mode <scheduled|focus>          Switch blocking mode
    enable | disable                Master switch
    add <host> | remove <host>      Edit the blocked hosts
    durations <host> <minutes>...   Set the unblock durations for a host
    window-add <day> <HH:MM> <HH:MM>  Add a weekly window (0 = Sunday)
    window-remove <index>           Remove a weekly window
    cards                           Show the current cards
    reroll <n> | select <n>         Re-roll or pick card n (1-3)
    cancel                          Cancel the running unblock
    unblocks                        List active temporary unblocks
    reset                           Reset everything to defaults

Examples:
    {ELEVATION_CMD} main.py start
    python main.py focus 2
    python main.py select 1
"""
    )


def open_background() -> Background:
    background = Background(Storage.open())
    background.attach()
    return background


def cmd_start(args):
    """Run the background controller with the DNS server in foreground."""
    background = Background(Storage.open())
    background.start()
    server = FocusBlockerDNS(background.controller)

    def signal_handler(signum, frame):
        server.stop()
        background.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        server.start()
    except PermissionError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"Error: {e}")
        sys.exit(1)


def cmd_status(args):
    """Show current status."""
    background = open_background()
    settings = background.settings.load()
    state = background.reroll.load()

    print("=" * 50)
    print("Focus Gamble Status")
    print("=" * 50)
    print()
    print(status_message(background.clock(), settings))
    print()
    print(f"Blocked hosts: {', '.join(settings.blocked_hosts) or 'none'}")
    for index, window in enumerate(settings.windows):
        print(f"  [{index}] {window}")
    print()
    print(f"Cards:     {state.phase.value}")
    print(f"Re-rolls:  {state.available_rerolls}")
    print()


def _settings_command(change):
    background = open_background()
    settings = background.settings.update(change)
    print(status_message(background.clock(), settings))


def cmd_focus(args):
    if len(args) != 1:
        raise SettingsError("Usage: focus <hours>")
    try:
        hours = float(args[0])
    except ValueError:
        raise SettingsError(f"Invalid hours {args[0]!r}")
    _settings_command(lambda s: start_focus(s, hours, now_ms()))


def cmd_stop_focus(args):
    _settings_command(stop_focus)


def cmd_mode(args):
    if len(args) != 1:
        raise SettingsError("Usage: mode <scheduled|focus>")
    _settings_command(lambda s: set_mode(s, args[0]))


def cmd_enable(args):
    _settings_command(lambda s: set_enabled(s, True))


def cmd_disable(args):
    _settings_command(lambda s: set_enabled(s, False))


def cmd_add(args):
    if len(args) != 1:
        raise SettingsError("Usage: add <host>")
    _settings_command(lambda s: add_host(s, args[0]))


def cmd_remove(args):
    if len(args) != 1:
        raise SettingsError("Usage: remove <host>")
    _settings_command(lambda s: remove_host(s, args[0]))


def cmd_durations(args):
    if len(args) < 2:
        raise SettingsError("Usage: durations <host> <minutes>...")
    try:
        minutes = [int(m) for m in args[1:]]
    except ValueError:
        raise SettingsError("Durations must be whole minutes")
    _settings_command(lambda s: set_durations(s, args[0], minutes))


def cmd_window_add(args):
    if len(args) != 3 or not args[0].isdigit():
        raise SettingsError("Usage: window-add <day 0-6> <HH:MM> <HH:MM>")
    _settings_command(lambda s: add_window(s, int(args[0]), args[1], args[2]))


def cmd_window_remove(args):
    if len(args) != 1 or not args[0].isdigit():
        raise SettingsError("Usage: window-remove <index>")
    _settings_command(lambda s: remove_window(s, int(args[0])))


def _print_cards(background, state):
    now = background.clock()
    if not state.cards:
        if isinstance(state.reset_timer, Running):
            print(f"Next selection in {state.reset_timer.remaining(now) // 60000} min.")
        elif state.phase is Phase.COUNTDOWN_RUNNING:
            print("Countdown paused.")
        else:
            print("No cards. Start a focus session to play.")
        return
    for index, card in enumerate(state.cards, start=1):
        marker = " <- selected" if state.selected_card == index - 1 else ""
        print(f"  {index}. {card}{marker}")
    if state.phase is Phase.LOCKED and state.selected_card_expires_at:
        print(f"Unblocked until {to_datetime(state.selected_card_expires_at):%H:%M}.")
    elif state.phase is Phase.SELECTABLE:
        print(f"Re-rolls available: {state.available_rerolls}")


def cmd_cards(args):
    background = open_background()
    _print_cards(background, background.reroll.load())


def _card_index(args) -> int:
    if len(args) != 1 or not args[0].isdigit():
        raise RerollError("Pick a card by number (1-3)")
    return int(args[0]) - 1


def cmd_reroll(args):
    background = open_background()
    _print_cards(background, background.reroll.reroll(_card_index(args)))


def cmd_select(args):
    background = open_background()
    _print_cards(background, background.reroll.select(_card_index(args)))


def cmd_cancel(args):
    background = open_background()
    _print_cards(background, background.reroll.cancel_selection())


def cmd_unblocks(args):
    background = open_background()
    unblocks = background.client.active_unblocks()
    if not unblocks:
        print("No active temporary unblocks.")
    for unblock in unblocks:
        print(f"  {unblock.domain} until {to_datetime(unblock.expires_at):%a %H:%M}")


def cmd_reset(args):
    background = open_background()
    _print_cards(background, background.reroll.reset())
    print("Settings restored to defaults.")


COMMANDS = {
    "start": cmd_start,
    "status": cmd_status,
    "focus": cmd_focus,
    "stop-focus": cmd_stop_focus,
    "mode": cmd_mode,
    "enable": cmd_enable,
    "disable": cmd_disable,
    "add": cmd_add,
    "remove": cmd_remove,
    "durations": cmd_durations,
    "window-add": cmd_window_add,
    "window-remove": cmd_window_remove,
    "cards": cmd_cards,
    "reroll": cmd_reroll,
    "select": cmd_select,
    "cancel": cmd_cancel,
    "unblocks": cmd_unblocks,
    "reset": cmd_reset,
}


def main():
    """Main entry point."""
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)

    if len(sys.argv) < 2:
        print_usage()
        sys.exit(1)

    command = sys.argv[1].lower()

    if command in COMMANDS:
        try:
            COMMANDS[command](sys.argv[2:])
        except (SettingsError, RerollError, StorageError) as e:
            print(f"Error: {e}")
            sys.exit(1)
    elif command in ("-h", "--help", "help"):
        print_usage()
    else:
        print(f"Unknown command: {command}")
        print_usage()
        sys.exit(1)


if __name__ == "__main__":
    main()
