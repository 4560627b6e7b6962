"""Bounded stack of reversible admin actions."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from database import now_utc

logger = logging.getLogger(__name__)


@dataclass
class UndoAction:
    description: str
    undo: Callable[[], None]
    kind: str = "generic"
    timestamp: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "kind": self.kind,
            "timestamp": self.timestamp.isoformat(),
        }


class UndoManager:
    def __init__(self, max_size: int = 50):
        self.max_size = max_size
        self._stack: list = []
        self._lock = threading.Lock()

    def add_action(self, description: str, undo_fn: Callable[[], None], kind: str = "generic") -> UndoAction:
        action = UndoAction(description=description, undo=undo_fn, kind=kind)
        with self._lock:
            self._stack.append(action)
            # oldest entries fall off the bottom
            while len(self._stack) > self.max_size:
                self._stack.pop(0)
        return action

    def last_action(self) -> Optional[UndoAction]:
        with self._lock:
            return self._stack[-1] if self._stack else None

    def remove_last_action(self) -> Optional[UndoAction]:
        with self._lock:
            return self._stack.pop() if self._stack else None

    def clear(self) -> None:
        with self._lock:
            self._stack.clear()

    def actions(self) -> list:
        with self._lock:
            return list(self._stack)

    @property
    def can_undo(self) -> bool:
        return bool(self._stack)

    def undo(self) -> UndoAction:
        """Run the most recent action's undo callable and drop it from the stack.

        If the callable raises, the action stays on the stack.
        """
        action = self.last_action()
        if action is None:
            raise LookupError("Nothing to undo")
        action.undo()
        with self._lock:
            if self._stack and self._stack[-1] is action:
                self._stack.pop()
        logger.info("Undid action: %s", action.description)
        return action

    def __len__(self) -> int:
        return len(self._stack)


undo_manager = UndoManager()
