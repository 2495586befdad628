"""
ECN State Machine - Explicit Congestion Notification bookkeeping (RFC 3168).

ECN lets a router say "I'm getting congested" by setting the CE codepoint on
a packet instead of dropping it. The feedback loop has two halves:

    receiver: sees CE  -> sets ECE on its ACKs until the sender replies with CWR
    sender:   sees ECE -> cuts cwnd once, marks the next segment CWR

Both halves are tracked in one ecn_state field. The machine is independent of
the congestion state, but the driver consults both when it decides which
window events to raise.
"""

import logging
from typing import Callable, Dict, List, Tuple

from .connection_state import ConnectionState
from .exceptions import InvariantViolation
from .states import EcnState, EcnSignal


logger = logging.getLogger(__name__)


# (current state, signal) -> next state
_TRANSITIONS: Dict[Tuple[EcnState, EcnSignal], EcnState] = {
    # Receiver side
    (EcnState.IDLE, EcnSignal.CE_RECEIVED): EcnState.CE_RCVD,
    (EcnState.CE_RCVD, EcnSignal.CE_RECEIVED): EcnState.CE_RCVD,
    (EcnState.SENDING_ECE, EcnSignal.CE_RECEIVED): EcnState.CE_RCVD,
    (EcnState.CE_RCVD, EcnSignal.ECE_SCHEDULED): EcnState.SENDING_ECE,
    (EcnState.SENDING_ECE, EcnSignal.ECE_SCHEDULED): EcnState.SENDING_ECE,
    (EcnState.SENDING_ECE, EcnSignal.CWR_RECEIVED): EcnState.IDLE,

    # Sender side
    (EcnState.IDLE, EcnSignal.ECE_RECEIVED): EcnState.ECE_RCVD,
    (EcnState.IDLE, EcnSignal.CWR_SENT): EcnState.CWR_SENT,
    (EcnState.ECE_RCVD, EcnSignal.CWR_SENT): EcnState.CWR_SENT,
    (EcnState.CWR_SENT, EcnSignal.CWR_SENT): EcnState.CWR_SENT,
    (EcnState.CWR_SENT, EcnSignal.COMPLETE_CWR): EcnState.IDLE,
}


class EcnStateMachine:
    """
    Owns the ecn_state field of a ConnectionState.

    DISABLED is sticky: a connection that did not negotiate ECN rejects every
    signal. Rejected signals leave the state untouched.
    """

    def __init__(self, state: ConnectionState):
        self._state = state
        self._transition_callbacks: List[Callable[[EcnState, EcnState, EcnSignal], None]] = []

    @property
    def current(self) -> EcnState:
        return self._state.ecn_state

    @property
    def enabled(self) -> bool:
        return self._state.ecn_state.is_enabled()

    def on_transition(self, callback: Callable[[EcnState, EcnState, EcnSignal], None]):
        """Register a callback for state transitions."""
        self._transition_callbacks.append(callback)

    def can_accept(self, signal: EcnSignal) -> bool:
        """Check if signal is valid in the current state."""
        current = self._state.ecn_state
        if current == EcnState.DISABLED:
            return False
        if signal == EcnSignal.NON_CE_RECEIVED:
            return True
        return (current, signal) in _TRANSITIONS

    def transition(self, signal: EcnSignal) -> bool:
        """
        Apply an ECN signal.

        Args:
            signal: What the transport observed or did

        Returns:
            True if the signal was accepted
        """
        self._state.ensure_open()
        if not isinstance(signal, EcnSignal):
            raise InvariantViolation(f"not an ECN signal: {signal!r}")

        if not self.can_accept(signal):
            logger.debug(f"ECN signal {signal.name} rejected in {self.current.name}")
            return False

        old_state = self._state.ecn_state
        new_state = _TRANSITIONS.get((old_state, signal), old_state)
        self._state.ecn_state = new_state

        if new_state != old_state:
            logger.debug(f"ECN {old_state.name} --[{signal.name}]--> {new_state.name}")
            for callback in self._transition_callbacks:
                callback(old_state, new_state, signal)
        return True

    def __str__(self) -> str:
        return f"EcnStateMachine(state={self.current.name})"
