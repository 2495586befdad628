"""
Tests for the congestion state enum and CongestionStateMachine.
"""

import pytest
from tcpcc.congestion import TCPNewReno
from tcpcc.congestion_state import CongestionStateMachine
from tcpcc.connection_state import ConnectionState
from tcpcc.exceptions import InvariantViolation
from tcpcc.states import CongestionState, EcnState


class ObservingNewReno(TCPNewReno):
    """NewReno that records the stored state seen by each notification."""

    def __init__(self, state):
        super().__init__(state)
        self.seen = []

    def congestion_state_set(self, new_state):
        self.seen.append((new_state, self.state.cong_state))


class FailingNewReno(TCPNewReno):
    def congestion_state_set(self, new_state):
        raise ZeroDivisionError("broken notification")


class TestCongestionState:
    """Test congestion state enum and helpers."""

    def test_reduction_states(self):
        """CWR, RECOVERY and LOSS cut the window."""
        assert CongestionState.CWR.is_reduction()
        assert CongestionState.RECOVERY.is_reduction()
        assert CongestionState.LOSS.is_reduction()

        assert not CongestionState.OPEN.is_reduction()
        assert not CongestionState.DISORDER.is_reduction()

    def test_recovering_states(self):
        """Only RECOVERY and LOSS repair a loss."""
        recovering = [s for s in CongestionState if s.is_recovering()]
        assert recovering == [CongestionState.RECOVERY, CongestionState.LOSS]

    def test_severity_order(self):
        """Severity increases from OPEN to LOSS."""
        order = [
            CongestionState.OPEN,
            CongestionState.DISORDER,
            CongestionState.CWR,
            CongestionState.RECOVERY,
            CongestionState.LOSS
        ]
        severities = [s.severity for s in order]
        assert severities == sorted(severities)
        assert len(set(severities)) == len(order)

    def test_ecn_enabled(self):
        """Only DISABLED reports ECN as off."""
        for state in EcnState:
            assert state.is_enabled() == (state != EcnState.DISABLED)


class TestCongestionStateMachine:
    """Test congestion state transitions."""

    def test_initial_state(self):
        """A new connection starts OPEN."""
        machine = CongestionStateMachine(ConnectionState(mss=536))
        assert machine.current == CongestionState.OPEN

    def test_set_state_stores_field(self):
        """The shared ConnectionState field is updated."""
        state = ConnectionState(mss=536)
        machine = CongestionStateMachine(state)

        transition = machine.set_state(CongestionState.RECOVERY)

        assert state.cong_state == CongestionState.RECOVERY
        assert transition.from_state == CongestionState.OPEN
        assert transition.to_state == CongestionState.RECOVERY
        assert "OPEN --> RECOVERY" in str(transition)

    def test_any_transition_allowed(self):
        """No table: the transport decides when to move."""
        state = ConnectionState(mss=536)
        machine = CongestionStateMachine(state)

        for target in [CongestionState.LOSS, CongestionState.DISORDER,
                       CongestionState.CWR, CongestionState.OPEN,
                       CongestionState.RECOVERY]:
            machine.set_state(target)
            assert state.cong_state == target

        assert len(machine.history) == 5

    def test_same_state_is_not_a_transition(self):
        """Re-entering the current state records nothing."""
        machine = CongestionStateMachine(ConnectionState(mss=536))
        transitions = []
        machine.on_transition(lambda old, new: transitions.append((old, new)))

        assert machine.set_state(CongestionState.OPEN) is None
        assert machine.history == []
        assert transitions == []

    def test_transition_callback(self):
        """Observers see every change in order."""
        machine = CongestionStateMachine(ConnectionState(mss=536))
        transitions = []

        def on_transition(from_state, to_state):
            transitions.append((from_state, to_state))

        machine.on_transition(on_transition)

        machine.set_state(CongestionState.DISORDER)
        machine.set_state(CongestionState.RECOVERY)

        assert transitions == [
            (CongestionState.OPEN, CongestionState.DISORDER),
            (CongestionState.DISORDER, CongestionState.RECOVERY)
        ]

    def test_history_captures_window(self):
        """Transitions record cwnd and ssthresh at the time."""
        state = ConnectionState(mss=536, cwnd=5360, ssthresh=4000)
        machine = CongestionStateMachine(state)

        machine.set_state(CongestionState.LOSS)

        assert machine.history[0].cwnd == 5360
        assert machine.history[0].ssthresh == 4000

    def test_invalid_target(self):
        """Targets must be congestion states."""
        machine = CongestionStateMachine(ConnectionState(mss=536))

        with pytest.raises(InvariantViolation):
            machine.set_state("RECOVERY")
        with pytest.raises(InvariantViolation):
            machine.set_state(EcnState.IDLE)

    def test_closed_state(self):
        """No transitions after the connection closed."""
        state = ConnectionState(mss=536)
        machine = CongestionStateMachine(state)
        state.close()

        with pytest.raises(InvariantViolation):
            machine.set_state(CongestionState.LOSS)


class TestNotificationOrdering:
    """Test that algorithms are notified only after the state is stored."""

    def test_notify_after_set_state(self):
        """The algorithm observes the new state from inside its hook."""
        state = ConnectionState(mss=536)
        machine = CongestionStateMachine(state)
        cc = ObservingNewReno(state)

        machine.set_state(CongestionState.RECOVERY)
        machine.notify(cc, CongestionState.RECOVERY)

        assert cc.seen == [(CongestionState.RECOVERY, CongestionState.RECOVERY)]

    def test_notify_before_set_state_rejected(self):
        """Notifying with a stale stored state is an invariant violation."""
        state = ConnectionState(mss=536)
        machine = CongestionStateMachine(state)
        cc = ObservingNewReno(state)

        with pytest.raises(InvariantViolation, match="before the stored state"):
            machine.notify(cc, CongestionState.LOSS)

        assert cc.seen == []
        assert state.cong_state == CongestionState.OPEN

    def test_failing_notification(self):
        """A raising congestion_state_set is a programming defect."""
        state = ConnectionState(mss=536)
        machine = CongestionStateMachine(state)

        machine.set_state(CongestionState.LOSS)
        with pytest.raises(InvariantViolation, match="FailingNewReno"):
            machine.notify(FailingNewReno(state), CongestionState.LOSS)

    def test_notify_on_closed_state(self):
        """No notifications after close."""
        state = ConnectionState(mss=536)
        machine = CongestionStateMachine(state)
        cc = ObservingNewReno(state)
        state.close()

        with pytest.raises(InvariantViolation):
            machine.notify(cc, CongestionState.OPEN)
        assert cc.seen == []
