"""Routes parsed webhook events to the stage that handles them."""

from __future__ import annotations

from concurrent.futures import Future
from typing import Any, Dict, Iterable, List, Optional

from .events import Event
from .logging import get_logger
from .models import CheckRun
from .workflow import CheckRunWorkflow, StageHandler

logger = get_logger("router")

# GitHub echoes our own completions back; reacting to them would loop.
IGNORED_ACTIONS = frozenset({"completed"})


class EventRouter:
    """Dispatch events to the first registered stage that accepts them."""

    def __init__(self, handlers: Iterable[StageHandler[Any]]) -> None:
        self._handlers: Dict[type, List[StageHandler[Any]]] = {}
        for handler in handlers:
            self._handlers.setdefault(handler.event_type, []).append(handler)

    @classmethod
    def for_workflow(cls, workflow: CheckRunWorkflow) -> "EventRouter":
        return cls(workflow.stages())

    def dispatch(self, event: Event) -> Optional["Future[CheckRun]"]:
        """Start the matching stage; ``None`` when the event is ignored.

        Errors raised before the stage detaches (check-run creation, payload
        validation) propagate to the caller.
        """
        kind = type(event).__name__
        if event.action in IGNORED_ACTIONS:
            logger.debug("Ignoring %s with action %s", kind, event.action)
            return None

        for handler in self._handlers.get(type(event), []):
            if handler.accepts(event):
                logger.info("Dispatching %s (%s) to %s", kind, event.action, handler.name)
                return handler.advance(event)

        logger.info("No stage handles %s with action %s", kind, event.action)
        return None


__all__ = ["EventRouter", "IGNORED_ACTIONS"]
