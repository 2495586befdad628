"""
tcpcc - A pluggable TCP congestion control engine.

This package implements the decision logic of TCP congestion control: how far
the congestion window may grow on each ACK, when to cut it, and which
congestion state the connection is in. It never touches sockets, bytes on the
wire or timers; a transport drives it through ConnectionDriver and reads the
resulting window back.
"""

from .exceptions import InvariantViolation
from .states import CongestionState, EcnState, EcnSignal, CongestionEvent
from .connection_state import ConnectionState, initial_window, INITIAL_SSTHRESH
from .congestion_state import CongestionStateMachine, StateTransition
from .ecn import EcnStateMachine
from .congestion import (
    CongestionControl, RateSample, TCPNewReno, TCPLinuxReno,
    register_algorithm, create_congestion_control, available_algorithms
)
from .rtt import RttEstimator
from .driver import ConnectionDriver, CongestionConfig, CongestionSignal, CwndChange

__version__ = "1.0.0"

__all__ = [
    "InvariantViolation",
    "CongestionState",
    "EcnState",
    "EcnSignal",
    "CongestionEvent",
    "ConnectionState",
    "initial_window",
    "INITIAL_SSTHRESH",
    "CongestionStateMachine",
    "StateTransition",
    "EcnStateMachine",
    "CongestionControl",
    "RateSample",
    "TCPNewReno",
    "TCPLinuxReno",
    "register_algorithm",
    "create_congestion_control",
    "available_algorithms",
    "RttEstimator",
    "ConnectionDriver",
    "CongestionConfig",
    "CongestionSignal",
    "CwndChange",
]
