"""
RTT estimation for the congestion engine.

Algorithms get the raw RTT sample of each ACK through pkts_acked, but the
driver also keeps the smoothed view that the rest of a TCP stack reasons
about:

1. Jacobson's estimator (exponentially weighted moving averages, RFC 6298)
2. Karn's algorithm (never sample a retransmitted segment)

The engine does not run timers, so the RTO computed here is only reported.
Arming the retransmission timer is the transport's job.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class RttSnapshot:
    """Current estimator values, in seconds."""
    srtt: Optional[float]
    rttvar: Optional[float]
    rto: float
    samples: int


class RttEstimator:
    """
    Smoothed RTT and variance per RFC 6298.

    RTO = SRTT + max(G, K*RTTVAR)
    where G = clock granularity, K = 4
    """

    # RFC 6298 constants
    ALPHA = 1/8   # Weight for new RTT sample in SRTT
    BETA = 1/4    # Weight for new RTT deviation in RTTVAR
    K = 4         # Multiplier for RTTVAR in RTO calculation

    # Bounds (in seconds)
    MIN_RTO = 1.0
    MAX_RTO = 60.0
    INITIAL_RTO = 1.0

    def __init__(self, granularity: float = 0.0):
        self._granularity = granularity
        self._srtt: Optional[float] = None
        self._rttvar: Optional[float] = None
        self._rto: float = self.INITIAL_RTO
        self._samples = 0

    @property
    def srtt(self) -> Optional[float]:
        """Smoothed RTT in seconds."""
        return self._srtt

    @property
    def rttvar(self) -> Optional[float]:
        """RTT variance in seconds."""
        return self._rttvar

    @property
    def rto(self) -> float:
        """Retransmission timeout the estimate implies, in seconds."""
        return self._rto

    def update(self, measured_rtt: float, retransmitted: bool = False) -> bool:
        """
        Feed a new measurement.

        - First measurement: SRTT = R, RTTVAR = R/2
        - Subsequent: RTTVAR = (1-β)*RTTVAR + β*|SRTT-R|
                      SRTT = (1-α)*SRTT + α*R

        Args:
            measured_rtt: Measured round-trip time in seconds
            retransmitted: True if the sample came from a retransmitted segment

        Returns:
            True if the sample was used
        """
        # Karn's algorithm: the ACK may belong to either transmission
        if retransmitted or measured_rtt < 0:
            return False

        if self._srtt is None:
            self._srtt = measured_rtt
            self._rttvar = measured_rtt / 2
        else:
            self._rttvar = (1 - self.BETA) * self._rttvar + \
                          self.BETA * abs(self._srtt - measured_rtt)
            self._srtt = (1 - self.ALPHA) * self._srtt + \
                        self.ALPHA * measured_rtt

        rto = self._srtt + max(self._granularity, self.K * self._rttvar)
        self._rto = max(self.MIN_RTO, min(self.MAX_RTO, rto))
        self._samples += 1
        return True

    def snapshot(self) -> RttSnapshot:
        return RttSnapshot(self._srtt, self._rttvar, self._rto, self._samples)

    def __str__(self) -> str:
        srtt_str = f"{self._srtt*1000:.1f}ms" if self._srtt is not None else "N/A"
        return f"RttEstimator(SRTT={srtt_str}, RTO={self._rto*1000:.1f}ms)"
