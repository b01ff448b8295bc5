"""Request/response messaging between UI code and the background controller."""

import logging
from typing import Callable, Dict, List, Optional

from ledger import TemporaryUnblock

logger = logging.getLogger(__name__)

# Message actions understood by the background controller
TEMPORARY_UNBLOCK = "temporary_unblock"
CANCEL_TEMPORARY_UNBLOCK = "cancel_temporary_unblock"
GET_ACTIVE_UNBLOCKS = "get_active_unblocks"
CLEAR_TEMPORARY_UNBLOCKS = "clear_temporary_unblocks"
SCHEDULE_REROLL_RESET = "schedule_reroll_reset"
CANCEL_REROLL_RESET = "cancel_reroll_reset"
SCHEDULE_SELECTION_EXPIRY = "schedule_selection_expiry"

Handler = Callable[[dict], Optional[dict]]


class MessageRouter:
    """Dispatches messages to the handler registered for their action."""

    def __init__(self):
        self._handlers: Dict[str, Handler] = {}

    def register(self, action: str, handler: Handler) -> None:
        self._handlers[action] = handler

    def unregister(self, action: str) -> None:
        self._handlers.pop(action, None)

    def send(self, message: dict) -> Optional[dict]:
        """
        Deliver `message` and return the handler's response.

        Returns None when nobody listens for the action, since the other side
        may legitimately be absent. A failing handler yields
        {"success": False, "error": ...}.
        """
        action = message.get("action")
        handler = self._handlers.get(action)
        if handler is None:
            logger.debug("No listener for message %s", action)
            return None
        try:
            response = handler(message)
        except Exception as e:
            logger.exception("Error handling message %s", action)
            return {"success": False, "error": str(e)}
        return response if response is not None else {"success": True}


class BackgroundClient:
    """Typed helpers for the messages UI code sends to the controller."""

    def __init__(self, router: MessageRouter):
        self.router = router

    def send(self, message: dict) -> Optional[dict]:
        return self.router.send(message)

    def _ok(self, message: dict) -> bool:
        response = self.send(message)
        return bool(response and response.get("success"))

    def add_unblock(self, domain: str, expires_at: int) -> bool:
        return self._ok({"action": TEMPORARY_UNBLOCK, "domain": domain, "expires_at": expires_at})

    def cancel_unblock(self, domain: str) -> bool:
        return self._ok({"action": CANCEL_TEMPORARY_UNBLOCK, "domain": domain})

    def clear_unblocks(self) -> bool:
        return self._ok({"action": CLEAR_TEMPORARY_UNBLOCKS})

    def active_unblocks(self) -> List[TemporaryUnblock]:
        response = self.send({"action": GET_ACTIVE_UNBLOCKS})
        if not response or not response.get("success"):
            return []
        return [TemporaryUnblock.from_dict(u) for u in response.get("unblocks", [])]

    def schedule_reroll_reset(self, reset_time: int) -> bool:
        return self._ok({"action": SCHEDULE_REROLL_RESET, "reset_time": reset_time})

    def cancel_reroll_reset(self) -> bool:
        return self._ok({"action": CANCEL_REROLL_RESET})

    def schedule_selection_expiry(self, expires_at: int) -> bool:
        return self._ok({"action": SCHEDULE_SELECTION_EXPIRY, "expires_at": expires_at})
