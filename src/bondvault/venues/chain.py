"""Block clock and all-or-nothing call boundary shared by every participant.

Participants register with the chain and list the attributes that make up
their mutable state in ``_state_fields`` (plain data, deep-copied) and
``_ref_fields`` (references to other participants, copied by identity). The
outermost ``transaction()`` snapshots both and restores them if the call
raises, so a failed swap or venue deposit reverts every earlier change.
"""

import copy
import functools
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class Chain:
    """Single-writer block clock with snapshot/rollback transactions."""

    def __init__(self, start_block: int = 0):
        self.block = start_block
        self._participants: List[Any] = []
        self._lock = threading.RLock()
        self._depth = 0

    def register(self, participant: Any) -> None:
        """Add a participant whose state is covered by transactions."""
        if participant not in self._participants:
            self._participants.append(participant)

    def advance_blocks(self, n: int) -> int:
        """Move the clock forward ``n`` blocks and return the new height."""
        if n < 0:
            raise ValueError(f"Cannot move the clock backwards ({n} blocks)")
        with self._lock:
            self.block += n
        return self.block

    @contextmanager
    def transaction(self):
        """
        Run the enclosed block atomically.

        Nested transactions join the outermost one; only the outermost
        snapshot is restored on failure.
        """
        with self._lock:
            outermost = self._depth == 0
            snapshot = self._snapshot() if outermost else None
            self._depth += 1
            try:
                yield self
            except BaseException as exc:
                if outermost:
                    self._restore(snapshot)
                    logger.debug("Rolled back transaction at block %d: %r", self.block, exc)
                raise
            finally:
                self._depth -= 1

    def _snapshot(self) -> List[Dict[str, Any]]:
        saved = []
        for participant in self._participants:
            state = {
                name: copy.deepcopy(getattr(participant, name))
                for name in getattr(participant, '_state_fields', ())
            }
            for name in getattr(participant, '_ref_fields', ()):
                state[name] = getattr(participant, name)
            saved.append(state)
        return saved

    def _restore(self, snapshot: List[Dict[str, Any]]) -> None:
        for participant, state in zip(self._participants, snapshot):
            for name, value in state.items():
                setattr(participant, name, value)


def atomic(method):
    """Run a participant method inside ``self.chain.transaction()``."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.chain.transaction():
            return method(self, *args, **kwargs)
    return wrapper
