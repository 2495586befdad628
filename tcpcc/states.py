"""
Congestion and ECN states - the vocabulary shared by every component.

A sender's congestion machinery is really two small state machines running
side by side:

- The congestion state says which phase the connection is in. Linux calls
  these the CA states: Open, Disorder, CWR, Recovery and Loss. Algorithms read
  it to decide how to react to the next ACK.
- The ECN state tracks Explicit Congestion Notification (RFC 3168), where
  routers mark packets instead of dropping them and the endpoints echo the
  mark back to the sender.

Neither machine decides *when* to move. The transport driving the engine
does that; the machines are the single source of truth for where we are.
"""

from enum import Enum, auto


class CongestionState(Enum):
    """
    Congestion phases of a sender (Linux tcp_ca_state).

    OPEN: Normal operation, window grows with every ACK
    DISORDER: Duplicate ACKs or SACKs seen, but not enough to declare loss
    CWR: Window reduced in response to an ECN echo (Congestion Window Reduced)
    RECOVERY: Fast retransmit done, repairing a loss without a timeout
    LOSS: Retransmission timeout, window collapsed to one segment
    """

    OPEN = auto()
    DISORDER = auto()
    CWR = auto()
    RECOVERY = auto()
    LOSS = auto()

    def is_reduction(self) -> bool:
        """Check if entering this state cuts the window."""
        return self in (
            CongestionState.CWR,
            CongestionState.RECOVERY,
            CongestionState.LOSS
        )

    def is_recovering(self) -> bool:
        """Check if the connection is repairing a loss."""
        return self in (CongestionState.RECOVERY, CongestionState.LOSS)

    @property
    def severity(self) -> int:
        """Ordering used to ignore a weaker signal during a stronger response."""
        return _SEVERITY[self]


_SEVERITY = {
    CongestionState.OPEN: 0,
    CongestionState.DISORDER: 1,
    CongestionState.CWR: 2,
    CongestionState.RECOVERY: 3,
    CongestionState.LOSS: 4,
}


class EcnState(Enum):
    """
    ECN sub-states.

    Receiver side: CE_RCVD -> SENDING_ECE -> IDLE (once the sender's CWR arrives)
    Sender side: ECE_RCVD -> CWR_SENT -> IDLE (once the reduction completes)
    """

    # Peer did not negotiate ECN; nothing ever changes
    DISABLED = auto()

    # ECN negotiated, nothing outstanding
    IDLE = auto()

    # Received a segment carrying Congestion Experienced
    CE_RCVD = auto()

    # Our ACKs carry ECE until the sender answers with CWR
    SENDING_ECE = auto()

    # Received an ACK with ECE set
    ECE_RCVD = auto()

    # Reduced the window and marked the next segment CWR
    CWR_SENT = auto()

    def is_enabled(self) -> bool:
        return self != EcnState.DISABLED


class EcnSignal(Enum):
    """Inputs to the ECN state machine."""

    # Receiver side
    CE_RECEIVED = auto()
    NON_CE_RECEIVED = auto()
    ECE_SCHEDULED = auto()
    CWR_RECEIVED = auto()

    # Sender side
    ECE_RECEIVED = auto()
    CWR_SENT = auto()
    COMPLETE_CWR = auto()


class CongestionEvent(Enum):
    """
    Window events delivered to cwnd_event (Linux tcp_ca_event).

    These are transient: each one is handed to the algorithm once and then
    forgotten.
    """

    # First transmission when no packet is in flight
    TX_START = auto()

    # Congestion window restart after an idle period
    CWND_RESTART = auto()

    # End of the congestion window reduction
    COMPLETE_CWR = auto()

    # Retransmission timeout
    LOSS = auto()

    # ECT set, but not CE marked
    ECN_NO_CE = auto()

    # Received a CE marked IP packet
    ECN_IS_CE = auto()

    # Delayed ACK sent
    DELAYED_ACK = auto()

    # Non-delayed ACK sent
    NON_DELAYED_ACK = auto()
