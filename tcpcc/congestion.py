"""
TCP Congestion Control - pluggable window algorithms.

Congestion control keeps a sender from overloading the *network*, as opposed
to flow control which protects the receiver. The network never says how much
it can take, so TCP infers it:
- ACKs arriving means there is room: grow the window
- Loss or an ECN echo means there isn't: shrink it

Every algorithm plugs into the same set of hooks, modelled on Linux's
tcp_congestion_ops:

    get_ssthresh         new slow start threshold after a loss
    increase_window      grow cwnd for newly acknowledged data
    pkts_acked           RTT / delivery sample for every ACK
    congestion_state_set told about a new congestion state (already stored)
    cwnd_event           told about window events (idle restart, CE mark...)
    has_cong_control     capability probe for the rate-based cong_control hook

The transport owns the sequencing (see driver.py). An algorithm never writes
ssthresh itself; it returns a value from get_ssthresh and the driver stores it,
so every ssthresh change is made in one place.

Algorithms implemented:
1. NewReno (RFC 5681 / RFC 6582) - the reference algorithm
2. Linux Reno - the same AIMD idea with Linux's byte-counting slow start
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Type

from .connection_state import ConnectionState
from .exceptions import InvariantViolation
from .states import CongestionEvent, CongestionState


logger = logging.getLogger(__name__)


@dataclass
class RateSample:
    """
    Delivery rate sample handed to cong_control.

    Only algorithms that report has_cong_control() ever receive one.
    """
    delivery_rate: float  # bytes/sec
    interval: float       # seconds the sample spans
    delivered: int        # bytes delivered over the interval
    prior_in_flight: int = 0
    rtt: Optional[float] = None
    is_app_limited: bool = False


class CongestionControl(ABC):
    """
    Abstract base class for congestion control algorithms.

    An algorithm holds a reference to its connection's ConnectionState and
    may change cwnd from increase_window (and cong_control, if it has one).

    All algorithms must implement:
    - get_ssthresh: Slow start threshold to use after a loss

    Everything else has a do-nothing default.
    """

    name = "base"

    # True only if increase_window is meant to run during RECOVERY / LOSS
    grows_during_recovery = False

    def __init__(self, state: ConnectionState):
        """
        Initialize congestion controller.

        Args:
            state: The connection's congestion variables
        """
        self.state = state

    @property
    def cwnd(self) -> int:
        """Current congestion window in bytes."""
        return self.state.cwnd

    @property
    def ssthresh(self) -> int:
        """Slow start threshold in bytes."""
        return self.state.ssthresh

    @abstractmethod
    def get_ssthresh(self, bytes_in_flight: int) -> int:
        """
        Slow start threshold after a loss event.

        The congestion state has already been changed when this is called.
        Implementations return the value and must not store it.

        Args:
            bytes_in_flight: Total bytes in flight

        Returns:
            Slow start threshold in bytes
        """

    def increase_window(self, segments_acked: int):
        """
        Grow cwnd for newly acknowledged data (Linux cong_avoid).

        Called once per ACK, also for cumulative ACKs.

        Args:
            segments_acked: Count of segments acked
        """

    def pkts_acked(self, segments_acked: int, rtt: Optional[float]):
        """
        Timing information on a received ACK.

        Args:
            segments_acked: Count of segments acked
            rtt: Last RTT sample in seconds, if any
        """

    def congestion_state_set(self, new_state: CongestionState):
        """
        Called after the stored congestion state changed to new_state.

        Must not raise. The algorithm cannot change cong_state from here.
        """

    def cwnd_event(self, event: CongestionEvent):
        """Called on congestion window events (Linux cwnd_event)."""

    def has_cong_control(self) -> bool:
        """True if the algorithm implements the rate-based cong_control hook."""
        return False

    def cong_control(self, rate_sample: RateSample):
        """
        Update cwnd and pacing rate from a delivery rate sample.

        Only called when has_cong_control() is True.
        """
        raise InvariantViolation(
            f"{type(self).__name__} does not implement cong_control"
        )

    def __str__(self) -> str:
        return (f"{type(self).__name__}(cwnd={self.state.cwnd}, "
                f"ssthresh={self.state.ssthresh}, "
                f"state={self.state.cong_state.name})")


# ========== Algorithm registry ==========

_ALGORITHMS: Dict[str, Type[CongestionControl]] = {}


def register_algorithm(name: str) -> Callable[[Type[CongestionControl]], Type[CongestionControl]]:
    """Class decorator making an algorithm selectable by name."""
    def decorator(cls: Type[CongestionControl]) -> Type[CongestionControl]:
        _ALGORITHMS[name.lower()] = cls
        cls.name = name.lower()
        return cls
    return decorator


def available_algorithms() -> List[str]:
    """Names accepted by create_congestion_control()."""
    return sorted(_ALGORITHMS)


def create_congestion_control(name: str, state: ConnectionState) -> CongestionControl:
    """
    Instantiate an algorithm by name for one connection.

    Args:
        name: Registered algorithm name (case-insensitive)
        state: The connection's congestion variables

    Raises:
        ValueError: If no algorithm is registered under name
    """
    try:
        cls = _ALGORITHMS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unsupported congestion control algorithm: {name!r} "
            f"(available: {', '.join(available_algorithms())})"
        ) from None
    return cls(state)


# ========== NewReno ==========

@register_algorithm("newreno")
class TCPNewReno(CongestionControl):
    """
    TCP NewReno (RFC 5681 window growth, RFC 6582 partial-ACK recovery).

    Slow start: +1 MSS per ACK, so cwnd doubles every RTT
    Congestion avoidance: +MSS*MSS/cwnd per ACK, roughly +1 MSS per RTT
    Loss: ssthresh = max(2*MSS, flight/2)

    The partial-ACK part of NewReno is loss recovery and lives with the
    transport; the algorithm only supplies the window arithmetic.
    """

    def slow_start(self, segments_acked: int) -> int:
        """
        Slow start growth.

        RFC 5681 caps the increase at one SMSS per ACK: cwnd += min(N, SMSS).
        A cumulative ACK covering several segments still only buys one MSS
        here. The segments that did not count are returned so the caller can
        offer them to congestion avoidance.

        Args:
            segments_acked: Count of segments acked

        Returns:
            Number of segments not used for growth
        """
        if segments_acked >= 1:
            self.state.cwnd += self.state.mss
            logger.debug(f"In slow start, updated to cwnd {self.state.cwnd} "
                         f"ssthresh {self.state.ssthresh}")
            return segments_acked - 1

        return 0

    def congestion_avoidance(self, segments_acked: int):
        """
        Congestion avoidance growth: about one full-sized segment per RTT.

        Each ACK adds MSS*MSS/cwnd, never less than one byte.
        """
        if segments_acked > 0:
            adder = float(self.state.mss * self.state.mss) / self.state.cwnd
            adder = max(1.0, adder)
            self.state.cwnd += int(adder)
            logger.debug(f"In congestion avoidance, updated to cwnd {self.state.cwnd} "
                         f"ssthresh {self.state.ssthresh}")

    def increase_window(self, segments_acked: int):
        """
        Try to increase cwnd following NewReno.

        If slow start pushes cwnd over ssthresh, the leftover segments of the
        same ACK go to congestion avoidance in this call. Leftovers are
        dropped otherwise: a cumulative ACK in slow start counts for one MSS.
        """
        if self.state.cwnd < self.state.ssthresh:
            segments_acked = self.slow_start(segments_acked)

        if self.state.cwnd >= self.state.ssthresh:
            self.congestion_avoidance(segments_acked)

    def get_ssthresh(self, bytes_in_flight: int) -> int:
        """Half the flight size, never below two segments."""
        return max(2 * self.state.mss, bytes_in_flight // 2)


# ========== Linux Reno ==========

@register_algorithm("linuxreno")
class TCPLinuxReno(TCPNewReno):
    """
    Reno as Linux implements it (tcp_slow_start / tcp_cong_avoid_ai).

    Differences from NewReno:
    - Slow start counts every acked segment: cwnd += N*MSS, clamped at
      ssthresh, and the segments past the clamp carry into avoidance.
    - Avoidance keeps an integer counter of acked segments and adds a whole
      MSS each time the counter reaches cwnd/MSS, instead of fractional bytes.

    Floor policy for ssthresh is the same as NewReno: max(2*MSS, flight/2).
    """

    def __init__(self, state: ConnectionState):
        super().__init__(state)
        self.cwnd_cnt = 0  # Segments acked since the last avoidance increment

    def slow_start(self, segments_acked: int) -> int:
        if segments_acked >= 1:
            old_cwnd = self.state.cwnd
            self.state.cwnd = min(old_cwnd + segments_acked * self.state.mss,
                                  self.state.ssthresh)
            logger.debug(f"In slow start, updated to cwnd {self.state.cwnd} "
                         f"ssthresh {self.state.ssthresh}")
            # A partial segment of growth still uses up a whole acked segment
            used = -(-(self.state.cwnd - old_cwnd) // self.state.mss)
            return segments_acked - used

        return 0

    def congestion_avoidance(self, segments_acked: int):
        if segments_acked <= 0:
            return

        w = max(1, self.state.cwnd // self.state.mss)

        # Window shrank below the counter since the last increment
        if self.cwnd_cnt >= w:
            self.cwnd_cnt = 0
            self.state.cwnd += self.state.mss

        self.cwnd_cnt += segments_acked
        if self.cwnd_cnt >= w:
            delta = self.cwnd_cnt // w
            self.cwnd_cnt -= delta * w
            self.state.cwnd += delta * self.state.mss
            logger.debug(f"In congestion avoidance, updated to cwnd {self.state.cwnd} "
                         f"ssthresh {self.state.ssthresh}")

    def congestion_state_set(self, new_state: CongestionState):
        if new_state.is_recovering():
            self.cwnd_cnt = 0
