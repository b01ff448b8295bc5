"""Open browsing contexts: enumeration, closing and navigation events."""

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class ContextError(Exception):
    """A browsing-context action failed (e.g. the context is already gone)."""


@dataclass(frozen=True)
class BrowsingContext:
    id: int
    url: str


NavigationCallback = Callable[[BrowsingContext], None]


class ContextHost:
    """Interface to whatever hosts the user's browsing contexts."""

    def query(self) -> List[BrowsingContext]:
        raise NotImplementedError

    def close(self, context_ids: Iterable[int]) -> None:
        raise NotImplementedError

    def on_navigation_completed(self, callback: NavigationCallback) -> None:
        raise NotImplementedError


class InMemoryContextHost(ContextHost):
    """
    Context host kept in process memory.

    Used when no real host is attached and by tests. `fail_next_closes`
    makes the next N close calls raise ContextError.
    """

    def __init__(self):
        self._contexts: Dict[int, BrowsingContext] = {}
        self._listeners: List[NavigationCallback] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self.fail_next_closes = 0
        self.close_calls = 0

    def open(self, url: str) -> BrowsingContext:
        with self._lock:
            context = BrowsingContext(next(self._ids), url)
            self._contexts[context.id] = context
        self._navigated(context)
        return context

    def navigate(self, context_id: int, url: str) -> BrowsingContext:
        with self._lock:
            if context_id not in self._contexts:
                raise ContextError(f"No context {context_id}")
            context = BrowsingContext(context_id, url)
            self._contexts[context_id] = context
        self._navigated(context)
        return context

    def get(self, context_id: int) -> Optional[BrowsingContext]:
        return self._contexts.get(context_id)

    def query(self) -> List[BrowsingContext]:
        with self._lock:
            return list(self._contexts.values())

    def close(self, context_ids: Iterable[int]) -> None:
        context_ids = list(context_ids)
        with self._lock:
            self.close_calls += 1
            if self.fail_next_closes > 0:
                self.fail_next_closes -= 1
                raise ContextError("Close failed")
            missing = [i for i in context_ids if i not in self._contexts]
            if missing:
                raise ContextError(f"No context {missing[0]}")
            for context_id in context_ids:
                del self._contexts[context_id]

    def on_navigation_completed(self, callback: NavigationCallback) -> None:
        self._listeners.append(callback)

    def _navigated(self, context: BrowsingContext) -> None:
        for callback in list(self._listeners):
            try:
                callback(context)
            except Exception:
                logger.exception("Error in navigation listener for %s", context.url)
