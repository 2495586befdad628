"""
Congestion State Machine - the single source of truth for the CA phase.

Unlike the connection state machine, there is no fixed transition table here.
The transport decides when a loss has happened or when recovery is over. What
this machine guarantees is ordering: the stored state changes *first*, and
only then does the algorithm hear about it. An algorithm that reads
cong_state from inside a hook must never see a stale value.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from .connection_state import ConnectionState
from .exceptions import InvariantViolation
from .states import CongestionState


logger = logging.getLogger(__name__)


@dataclass
class StateTransition:
    """A recorded change of congestion state."""
    from_state: CongestionState
    to_state: CongestionState
    cwnd: int
    ssthresh: int

    def __str__(self) -> str:
        return (f"{self.from_state.name} --> {self.to_state.name} "
                f"(cwnd={self.cwnd}, ssthresh={self.ssthresh})")


class CongestionStateMachine:
    """
    Owns the cong_state field of a ConnectionState.

    Usage:
        machine.set_state(CongestionState.RECOVERY)   # field updated
        machine.notify(strategy, CongestionState.RECOVERY)  # hook runs
    """

    def __init__(self, state: ConnectionState):
        self._state = state
        self._transition_callbacks: List[Callable[[CongestionState, CongestionState], None]] = []
        self.history: List[StateTransition] = []

    @property
    def current(self) -> CongestionState:
        return self._state.cong_state

    def on_transition(self, callback: Callable[[CongestionState, CongestionState], None]):
        """Register a callback for state transitions."""
        self._transition_callbacks.append(callback)

    def set_state(self, target: CongestionState) -> Optional[StateTransition]:
        """
        Store a new congestion state.

        Must run before any hook that depends on the new state.

        Args:
            target: State to enter

        Returns:
            The recorded transition, or None if already in target
        """
        self._state.ensure_open()
        if not isinstance(target, CongestionState):
            raise InvariantViolation(f"not a congestion state: {target!r}")

        old_state = self._state.cong_state
        self._state.cong_state = target
        if old_state == target:
            return None

        transition = StateTransition(old_state, target, self._state.cwnd, self._state.ssthresh)
        self.history.append(transition)
        logger.debug(f"Congestion state {transition}")

        for callback in self._transition_callbacks:
            callback(old_state, target)
        return transition

    def notify(self, strategy, new_state: CongestionState):
        """
        Tell the algorithm about a state it has already been moved into.

        Args:
            strategy: The connection's CongestionControl
            new_state: The state just stored with set_state()

        Raises:
            InvariantViolation: If the stored state is not new_state yet, or
                the algorithm's notification hook failed
        """
        self._state.ensure_open()
        if self._state.cong_state != new_state:
            raise InvariantViolation(
                f"congestion_state_set({new_state.name}) before the stored state "
                f"was updated (still {self._state.cong_state.name})"
            )
        try:
            strategy.congestion_state_set(new_state)
        except InvariantViolation:
            raise
        except Exception as e:
            raise InvariantViolation(
                f"{type(strategy).__name__}.congestion_state_set failed: {e}"
            ) from e

    def __str__(self) -> str:
        return f"CongestionStateMachine(state={self.current.name})"
