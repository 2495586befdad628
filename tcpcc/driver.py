"""
Connection Driver - sequencing the congestion engine for one connection.

The state machines and the algorithm are passive. Something has to turn
"an ACK arrived" or "the retransmission timer fired" into the right calls in
the right order. That is this module. The order matters more than anything
else here:

    1. store the new congestion state      (CongestionStateMachine.set_state)
    2. ask the algorithm for ssthresh      (get_ssthresh)
    3. store ssthresh
    4. tell the algorithm about the state  (congestion_state_set)
    5. cut the window
    6. raise the window event              (cwnd_event)

An algorithm can therefore trust cong_state whenever one of its hooks runs,
and congestion_state_set still sees the window from before the cut.

The driver does not own sockets, timers or sequence numbers. The transport
calls it on protocol events and reads cwnd back to decide how much to send.
Each connection gets its own driver; events for one connection must be
delivered one at a time, but separate drivers share nothing.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, List, Optional

from .congestion import CongestionControl, RateSample, create_congestion_control
from .congestion_state import CongestionStateMachine
from .connection_state import ConnectionState, DEFAULT_INITIAL_WINDOW
from .ecn import EcnStateMachine
from .exceptions import InvariantViolation
from .rtt import RttEstimator
from .states import CongestionEvent, CongestionState, EcnSignal, EcnState


logger = logging.getLogger(__name__)


class CongestionSignal(Enum):
    """
    Congestion indications the transport reports.

    RETRANSMIT_TIMEOUT: RTO fired - severe congestion, enter LOSS
    FAST_RETRANSMIT: Duplicate ACK threshold reached - enter RECOVERY
    ECN_ECHO: ACK carried ECE - reduce once, enter CWR
    """
    RETRANSMIT_TIMEOUT = auto()
    FAST_RETRANSMIT = auto()
    ECN_ECHO = auto()

    @property
    def target_state(self) -> CongestionState:
        return _SIGNAL_TARGETS[self]


_SIGNAL_TARGETS = {
    CongestionSignal.RETRANSMIT_TIMEOUT: CongestionState.LOSS,
    CongestionSignal.FAST_RETRANSMIT: CongestionState.RECOVERY,
    CongestionSignal.ECN_ECHO: CongestionState.CWR,
}

# Window events the transport may raise directly
_TRANSMIT_EVENTS = (
    CongestionEvent.TX_START,
    CongestionEvent.CWND_RESTART,
    CongestionEvent.DELAYED_ACK,
    CongestionEvent.NON_DELAYED_ACK,
)


@dataclass
class CongestionConfig:
    """Configuration options for a connection's congestion control."""

    # Maximum Segment Size (typically MTU - 40 for IP + TCP headers)
    mss: int = 1460

    # Initial window size in segments
    initial_window: int = DEFAULT_INITIAL_WINDOW

    # Initial slow start threshold in bytes (None = unlimited)
    initial_ssthresh: Optional[int] = None

    # Congestion control algorithm, see congestion.available_algorithms()
    algorithm: str = "newreno"

    # ECN negotiated with the peer
    ecn_enabled: bool = False

    # Duplicate ACKs that trigger fast retransmit
    dupack_threshold: int = 3


@dataclass
class CwndChange:
    """Record of a congestion window change for analysis."""
    timestamp: Optional[float]
    reason: str  # "ack", "dupack", "timeout", "fast_retransmit", "ece", ...
    cwnd_before: int
    cwnd_after: int
    ssthresh: int
    state: CongestionState


class ConnectionDriver:
    """
    Drives the congestion engine of one connection.

    Usage:
        driver = ConnectionDriver(CongestionConfig(mss=536, algorithm="newreno"))

        # New data acknowledged
        driver.on_ack_received(segments_acked=1, rtt=0.05, bytes_in_flight=4288)

        # Third duplicate ACK: fast retransmit
        if driver.on_duplicate_ack(bytes_in_flight=8576):
            retransmit_oldest()

        # Everything outstanding at loss time is acknowledged
        driver.on_recovery_complete()

        window = driver.get_send_window(receiver_window)
    """

    def __init__(self, config: Optional[CongestionConfig] = None,
                 strategy_factory: Optional[Callable[[ConnectionState], CongestionControl]] = None,
                 clock: Optional[Callable[[], float]] = None):
        """
        Initialize the driver and resolve the algorithm.

        Args:
            config: Congestion control configuration
            strategy_factory: Builds the algorithm from the connection state.
                              Defaults to looking up config.algorithm by name.
            clock: Time source for cwnd history records (None = no timestamps)
        """
        self.config = config or CongestionConfig()
        if self.config.dupack_threshold < 1:
            raise ValueError(f"dupack_threshold must be at least 1, got {self.config.dupack_threshold}")

        self.state = ConnectionState.create(
            mss=self.config.mss,
            initial_window_segments=self.config.initial_window,
            ssthresh=self.config.initial_ssthresh,
            ecn=self.config.ecn_enabled,
        )

        # Resolved once; no switching algorithms mid-connection
        if strategy_factory is None:
            self.congestion = create_congestion_control(self.config.algorithm, self.state)
        else:
            self.congestion = strategy_factory(self.state)
        if self.congestion.state is not self.state:
            raise InvariantViolation("algorithm is bound to a different connection state")

        self.cong_machine = CongestionStateMachine(self.state)
        self.ecn_machine = EcnStateMachine(self.state)
        self.rtt = RttEstimator()

        self._clock = clock
        self._dup_ack_count = 0
        self._aborted = False
        self._cwnd_callbacks: List[Callable[[CwndChange], None]] = []
        self.history: List[CwndChange] = []

        logger.debug(f"Congestion control {self.congestion} for mss={self.state.mss}, "
                     f"ecn={self.state.ecn_state.name}")

    @property
    def cwnd(self) -> int:
        """Current congestion window in bytes."""
        return self.state.cwnd

    @property
    def ssthresh(self) -> int:
        """Slow start threshold in bytes."""
        return self.state.ssthresh

    @property
    def cong_state(self) -> CongestionState:
        return self.state.cong_state

    @property
    def ecn_state(self) -> EcnState:
        return self.state.ecn_state

    @property
    def aborted(self) -> bool:
        """True once an invariant violation stopped this connection."""
        return self._aborted

    def on_cwnd_change(self, callback: Callable[[CwndChange], None]):
        """Register a callback for congestion window changes."""
        self._cwnd_callbacks.append(callback)

    # ========== Acknowledgments ==========

    def on_ack_received(self, segments_acked: int, rtt: Optional[float],
                        bytes_in_flight: int):
        """
        Handle an ACK that acknowledges new data.

        A cumulative ACK is one event with an aggregate segments_acked.

        Args:
            segments_acked: Full-sized segments newly acknowledged
            rtt: RTT sample in seconds (None if the ACK gave no sample)
            bytes_in_flight: Bytes still unacknowledged after this ACK
        """
        with self._processing("ack"):
            self._check_count("segments_acked", segments_acked)
            self._check_count("bytes_in_flight", bytes_in_flight)
            self.state.bytes_in_flight = bytes_in_flight
            self._dup_ack_count = 0

            # New data ends the reordering suspicion
            if self.state.cong_state == CongestionState.DISORDER:
                self._enter_state(CongestionState.OPEN)

            if rtt is not None:
                self._check_count("rtt", rtt)
                self.rtt.update(rtt)
                self.state.update_rtt(rtt)

            self.congestion.pkts_acked(segments_acked, rtt)

            if self.state.cong_state.is_recovering() and not self.congestion.grows_during_recovery:
                return

            cwnd_before = self.state.cwnd
            self.congestion.increase_window(segments_acked)
            self._check_window()
            self._record("ack", cwnd_before)

    def on_duplicate_ack(self, bytes_in_flight: int) -> bool:
        """
        Handle a duplicate ACK.

        The first one moves OPEN to DISORDER. Reaching dupack_threshold
        triggers fast retransmit. During recovery every further duplicate
        inflates cwnd by one MSS, since a segment has left the network.

        Returns:
            True if the transport should fast-retransmit now
        """
        with self._processing("duplicate ack"):
            self._check_count("bytes_in_flight", bytes_in_flight)
            self.state.bytes_in_flight = bytes_in_flight

            if self.state.cong_state == CongestionState.RECOVERY:
                cwnd_before = self.state.cwnd
                self.state.cwnd += self.state.mss
                self._record("dupack", cwnd_before)
                return False
            if self.state.cong_state == CongestionState.LOSS:
                return False

            self._dup_ack_count += 1
            if self.state.cong_state == CongestionState.OPEN:
                self._enter_state(CongestionState.DISORDER)

            if self._dup_ack_count == self.config.dupack_threshold:
                logger.debug("Duplicate ACK threshold reached - fast retransmit")
                return self._react(CongestionSignal.FAST_RETRANSMIT, bytes_in_flight)
            return False

    # ========== Congestion signals ==========

    def on_congestion_event(self, signal: CongestionSignal, bytes_in_flight: int) -> bool:
        """
        React to a congestion signal.

        Args:
            signal: What the transport detected
            bytes_in_flight: Bytes in flight when it was detected

        Returns:
            True if the window was reduced
        """
        with self._processing(f"congestion event {signal.name}"):
            self._check_count("bytes_in_flight", bytes_in_flight)
            self.state.bytes_in_flight = bytes_in_flight
            return self._react(signal, bytes_in_flight)

    def on_recovery_complete(self):
        """
        Return to OPEN once the data outstanding at loss time is acknowledged.

        Leaving RECOVERY deflates cwnd to ssthresh (RFC 6582 full ACK).
        Leaving CWR completes the ECN reduction.
        """
        with self._processing("recovery complete"):
            self._complete_recovery()

    # ========== ECN ==========

    def on_ecn_signal(self, signal: EcnSignal) -> bool:
        """
        Handle an ECN observation or action.

        Returns:
            True if the ECN state machine accepted the signal
        """
        with self._processing(f"ECN signal {signal}"):
            previous = self.state.ecn_state
            if not self.ecn_machine.transition(signal):
                if self.ecn_machine.enabled:
                    logger.warning(f"ECN signal {signal.name} ignored in {previous.name}")
                return False

            if signal == EcnSignal.CE_RECEIVED:
                if previous != EcnState.CE_RCVD:
                    self.congestion.cwnd_event(CongestionEvent.ECN_IS_CE)
            elif signal == EcnSignal.NON_CE_RECEIVED:
                if previous in (EcnState.CE_RCVD, EcnState.SENDING_ECE):
                    self.congestion.cwnd_event(CongestionEvent.ECN_NO_CE)
            elif signal == EcnSignal.ECE_RECEIVED:
                self._react(CongestionSignal.ECN_ECHO, self.state.bytes_in_flight)
                # Window is reduced now, or already by a recovery in progress
                self.ecn_machine.transition(EcnSignal.CWR_SENT)
            elif signal == EcnSignal.COMPLETE_CWR:
                if self.state.cong_state == CongestionState.CWR:
                    self._complete_recovery()
            return True

    # ========== Other hooks ==========

    def on_cwnd_event(self, event: CongestionEvent):
        """
        Forward a transmit-side window event to the algorithm.

        Loss, CWR completion and ECN events are raised by the driver itself.
        """
        with self._processing(f"cwnd event {event}"):
            if not isinstance(event, CongestionEvent):
                raise InvariantViolation(f"not a congestion event: {event!r}")
            if event not in _TRANSMIT_EVENTS:
                raise InvariantViolation(f"{event.name} is raised by the driver, not the transport")
            cwnd_before = self.state.cwnd
            self.congestion.cwnd_event(event)
            self._check_window()
            self._record(event.name.lower(), cwnd_before)

    def on_rate_sample(self, rate_sample: RateSample):
        """Hand a delivery rate sample to a rate-based algorithm."""
        with self._processing("rate sample"):
            if not self.congestion.has_cong_control():
                raise InvariantViolation(
                    f"{type(self.congestion).__name__} has no cong_control hook"
                )
            cwnd_before = self.state.cwnd
            self.congestion.cong_control(rate_sample)
            self._check_window()
            self._record("rate_sample", cwnd_before)

    def close(self):
        """Tear down. No event may be delivered afterwards."""
        if not self.state.closed:
            logger.info(f"Congestion control closed: {self.state}")
        self.state.close()

    def get_send_window(self, receiver_window: int) -> int:
        """
        Get the effective send window: min(cwnd, receiver_window).
        """
        return min(self.state.cwnd, receiver_window)

    def get_statistics(self) -> dict:
        """Get congestion statistics."""
        snapshot = self.rtt.snapshot()
        return {
            "algorithm": self.congestion.name,
            "cwnd": self.state.cwnd,
            "ssthresh": self.state.ssthresh,
            "mss": self.state.mss,
            "bytes_in_flight": self.state.bytes_in_flight,
            "congestion_state": self.state.cong_state.name,
            "ecn_state": self.state.ecn_state.name,
            "dup_ack_count": self._dup_ack_count,
            "srtt": snapshot.srtt,
            "rto": snapshot.rto,
            "min_rtt": self.state.min_rtt,
            "state_transitions": len(self.cong_machine.history),
            "cwnd_changes": len(self.history),
        }

    # ========== Internals ==========

    @contextmanager
    def _processing(self, what: str):
        """Refuse work on a dead connection and abort it on a broken invariant."""
        if self._aborted:
            raise InvariantViolation(f"connection aborted, refusing {what}")
        try:
            self.state.ensure_open()
            yield
        except InvariantViolation as e:
            self._aborted = True
            logger.error(f"Invariant violated during {what}: {e}")
            raise

    def _react(self, signal: CongestionSignal, bytes_in_flight: int) -> bool:
        """Enter the signal's state and cut the window, in hook order."""
        target = signal.target_state
        current = self.state.cong_state
        cwnd_before = self.state.cwnd

        # Another timeout while already in LOSS: collapse again, keep ssthresh
        if signal == CongestionSignal.RETRANSMIT_TIMEOUT and current == CongestionState.LOSS:
            self.state.cwnd = self.state.mss
            self._record("timeout", cwnd_before)
            self.congestion.cwnd_event(CongestionEvent.LOSS)
            return True

        if current.severity >= target.severity:
            logger.warning(f"{signal.name} ignored, already in {current.name}")
            return False

        self.cong_machine.set_state(target)
        self.state.ssthresh = self._consult_ssthresh(bytes_in_flight)

        # The algorithm sees the pre-reduction cwnd
        self.cong_machine.notify(self.congestion, target)

        if target == CongestionState.LOSS:
            self.state.cwnd = self.state.mss
            self._dup_ack_count = 0
        elif target == CongestionState.RECOVERY:
            self.state.cwnd = self.state.ssthresh + self.config.dupack_threshold * self.state.mss
        else:
            self.state.cwnd = max(self.state.mss, min(self.state.cwnd, self.state.ssthresh))

        logger.info(f"{signal.name}: {current.name} -> {target.name}, "
                    f"cwnd {cwnd_before} -> {self.state.cwnd}, ssthresh {self.state.ssthresh}")

        if target == CongestionState.LOSS:
            self.congestion.cwnd_event(CongestionEvent.LOSS)

        self._check_window()
        self._record(_SIGNAL_REASONS[signal], cwnd_before)
        return True

    def _consult_ssthresh(self, bytes_in_flight: int) -> int:
        if not self.state.cong_state.is_reduction():
            raise InvariantViolation(
                f"get_ssthresh consulted in {self.state.cong_state.name}"
            )
        return int(self.congestion.get_ssthresh(bytes_in_flight))

    def _complete_recovery(self):
        current = self.state.cong_state
        if current == CongestionState.OPEN:
            return

        cwnd_before = self.state.cwnd
        self._dup_ack_count = 0
        self.cong_machine.set_state(CongestionState.OPEN)
        if current == CongestionState.RECOVERY:
            self.state.cwnd = max(self.state.mss, self.state.ssthresh)

        self.cong_machine.notify(self.congestion, CongestionState.OPEN)

        if current == CongestionState.CWR:
            self.congestion.cwnd_event(CongestionEvent.COMPLETE_CWR)
        if self.state.ecn_state == EcnState.CWR_SENT:
            self.ecn_machine.transition(EcnSignal.COMPLETE_CWR)

        logger.debug(f"Recovery complete from {current.name}, cwnd {self.state.cwnd}")
        self._check_window()
        self._record("recovery_complete", cwnd_before)

    def _enter_state(self, target: CongestionState):
        self.cong_machine.set_state(target)
        self.cong_machine.notify(self.congestion, target)

    def _check_window(self):
        if self.state.cwnd < self.state.mss:
            raise InvariantViolation(
                f"cwnd {self.state.cwnd} fell below one segment (mss={self.state.mss})"
            )

    @staticmethod
    def _check_count(name: str, value: int):
        if value < 0:
            raise InvariantViolation(f"{name} must not be negative, got {value}")

    def _record(self, reason: str, cwnd_before: int):
        if self.state.cwnd == cwnd_before:
            return
        change = CwndChange(
            timestamp=self._clock() if self._clock else None,
            reason=reason,
            cwnd_before=cwnd_before,
            cwnd_after=self.state.cwnd,
            ssthresh=self.state.ssthresh,
            state=self.state.cong_state,
        )
        self.history.append(change)
        for callback in self._cwnd_callbacks:
            callback(change)

    def __str__(self) -> str:
        return (f"ConnectionDriver({self.congestion.name}, cwnd={self.state.cwnd}, "
                f"ssthresh={self.state.ssthresh}, state={self.state.cong_state.name})")


_SIGNAL_REASONS = {
    CongestionSignal.RETRANSMIT_TIMEOUT: "timeout",
    CongestionSignal.FAST_RETRANSMIT: "fast_retransmit",
    CongestionSignal.ECN_ECHO: "ece",
}
