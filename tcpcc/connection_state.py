"""
Per-connection congestion variables.

This is the TCB slice that congestion control cares about. One instance
exists per connection. The strategy and the two state machines all work on
this same object; nobody keeps a private copy of cwnd or ssthresh.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .exceptions import InvariantViolation
from .states import CongestionState, EcnState


logger = logging.getLogger(__name__)


# "Infinite" slow start threshold (largest 32-bit window)
INITIAL_SSTHRESH = 0xFFFFFFFF

# Initial window in segments (RFC 6928)
DEFAULT_INITIAL_WINDOW = 10


def initial_window(mss: int, segments: int = DEFAULT_INITIAL_WINDOW) -> int:
    """
    Compute the initial congestion window in bytes.

    Args:
        mss: Maximum Segment Size
        segments: Initial window in segments (1 gives the classic cwnd = MSS start)

    Returns:
        Initial cwnd in bytes
    """
    if segments < 1:
        raise ValueError(f"initial window must be at least 1 segment, got {segments}")
    return segments * mss


@dataclass
class ConnectionState:
    """
    Congestion state of one connection.

    cwnd, ssthresh and bytes_in_flight are in bytes. bytes_in_flight is
    written by the driver and only read by algorithms.
    """
    mss: int
    cwnd: int = 0
    ssthresh: int = INITIAL_SSTHRESH
    bytes_in_flight: int = 0
    cong_state: CongestionState = CongestionState.OPEN
    ecn_state: EcnState = EcnState.DISABLED

    # RTT estimate in seconds, None until the first sample
    last_rtt: Optional[float] = None
    min_rtt: Optional[float] = None

    closed: bool = field(default=False, repr=False)

    def __post_init__(self):
        if self.mss <= 0:
            raise InvariantViolation(f"mss must be positive, got {self.mss}")
        if self.cwnd == 0:
            self.cwnd = initial_window(self.mss)
        if self.cwnd < self.mss:
            raise InvariantViolation(
                f"cwnd {self.cwnd} is below one segment (mss={self.mss})"
            )

    @classmethod
    def create(cls, mss: int, initial_window_segments: int = DEFAULT_INITIAL_WINDOW,
               ssthresh: Optional[int] = None, ecn: bool = False) -> "ConnectionState":
        """
        Create the state for a newly established connection.

        Args:
            mss: Negotiated Maximum Segment Size
            initial_window_segments: Initial cwnd in segments
            ssthresh: Initial slow start threshold cap (None = unlimited)
            ecn: True if ECN was negotiated during the handshake
        """
        if mss <= 0:
            raise InvariantViolation(f"mss must be positive, got {mss}")
        return cls(
            mss=mss,
            cwnd=initial_window(mss, initial_window_segments),
            ssthresh=INITIAL_SSTHRESH if ssthresh is None else ssthresh,
            ecn_state=EcnState.IDLE if ecn else EcnState.DISABLED,
        )

    @property
    def in_slow_start(self) -> bool:
        return self.cwnd < self.ssthresh

    @property
    def segments_in_cwnd(self) -> int:
        """Congestion window in full-sized segments."""
        return self.cwnd // self.mss

    def update_rtt(self, rtt: float):
        """Record an RTT sample (seconds)."""
        self.last_rtt = rtt
        if self.min_rtt is None or rtt < self.min_rtt:
            self.min_rtt = rtt

    def ensure_open(self):
        """Raise if the connection has already been torn down."""
        if self.closed:
            raise InvariantViolation("congestion state used after the connection closed")

    def close(self):
        """Mark the state destroyed. Any later hook call is a programming error."""
        if not self.closed:
            logger.debug(f"Congestion state closed: cwnd={self.cwnd}, ssthresh={self.ssthresh}")
        self.closed = True

    def __str__(self) -> str:
        return (f"ConnectionState(cwnd={self.cwnd}, ssthresh={self.ssthresh}, "
                f"mss={self.mss}, state={self.cong_state.name}, ecn={self.ecn_state.name})")
