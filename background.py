"""Long-lived background context: wires storage, timers, controller and card gamble."""

import logging
import random
from typing import Callable, Optional

from alarms import AlarmService
from contexts import ContextHost, InMemoryContextHost
from controller import BlockingController
from ledger import UnblockLedger
from messaging import BackgroundClient, MessageRouter
from reroll import RerollMachine
from scheduler import now_ms
from settings import SettingsStore
from storage import Storage

logger = logging.getLogger(__name__)


class Background:
    def __init__(
        self,
        storage: Storage,
        contexts: Optional[ContextHost] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = now_ms,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.storage = storage
        self.clock = clock
        self.settings = SettingsStore(storage)
        self.ledger = UnblockLedger(storage, clock)
        self.alarms = AlarmService(storage, clock)
        self.contexts = contexts if contexts is not None else InMemoryContextHost()
        self.router = MessageRouter()
        self.client = BackgroundClient(self.router)

        controller_kwargs = {"clock": clock}
        if sleep is not None:
            controller_kwargs["sleep"] = sleep
        self.controller = BlockingController(
            self.settings, self.ledger, self.alarms, self.contexts, **controller_kwargs
        )
        self.controller.register_handlers(self.router)
        self.reroll = RerollMachine(storage, self.settings, self.router, rng, clock)
        self._attached = False

    def attach(self) -> None:
        """Run the start-up triggers without starting the ticker thread."""
        if self._attached:
            return
        self._attached = True
        self.controller.start()
        self.alarms.add_listener(self.reroll.on_alarm)
        self.reroll.attach()

    def start(self) -> None:
        """Attach and start firing alarms in the background."""
        self.attach()
        self.alarms.start()

    def stop(self) -> None:
        self.alarms.stop()
