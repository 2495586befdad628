"""
Tests for ConnectionState.
"""

import pytest
from tcpcc.connection_state import ConnectionState, INITIAL_SSTHRESH, initial_window
from tcpcc.exceptions import InvariantViolation
from tcpcc.states import CongestionState, EcnState


class TestInitialWindow:
    """Test initial window sizing."""

    def test_segments_times_mss(self):
        """Window is counted in full segments."""
        assert initial_window(1460) == 14600
        assert initial_window(536, 1) == 536
        assert initial_window(536, 4) == 2144

    def test_at_least_one_segment(self):
        """An empty initial window is a configuration error."""
        with pytest.raises(ValueError):
            initial_window(1460, 0)


class TestConnectionState:
    """Test the shared congestion variables."""

    def test_create_defaults(self):
        """Fresh connections start OPEN with unlimited ssthresh."""
        state = ConnectionState.create(mss=536, initial_window_segments=1)

        assert state.cwnd == 536
        assert state.ssthresh == INITIAL_SSTHRESH == 4294967295
        assert state.cong_state == CongestionState.OPEN
        assert state.ecn_state == EcnState.DISABLED
        assert state.bytes_in_flight == 0
        assert state.in_slow_start

    def test_create_with_ecn(self):
        """Negotiated ECN starts IDLE."""
        state = ConnectionState.create(mss=1460, ecn=True)
        assert state.ecn_state == EcnState.IDLE

    def test_create_with_cap(self):
        """A configured ssthresh cap is used as is."""
        state = ConnectionState.create(mss=1460, ssthresh=65535)
        assert state.ssthresh == 65535

    def test_default_window(self):
        """Omitting cwnd gives the default initial window."""
        assert ConnectionState(mss=1000).cwnd == 10000

    @pytest.mark.parametrize("mss", [0, -1])
    def test_mss_must_be_positive(self, mss):
        """mss == 0 is an invariant violation."""
        with pytest.raises(InvariantViolation):
            ConnectionState(mss=mss)
        with pytest.raises(InvariantViolation):
            ConnectionState.create(mss=mss)

    def test_cwnd_below_mss(self):
        """cwnd must hold at least one segment."""
        with pytest.raises(InvariantViolation):
            ConnectionState(mss=536, cwnd=100)

    def test_segments_in_cwnd(self):
        """Window in whole segments."""
        state = ConnectionState(mss=536, cwnd=2000)
        assert state.segments_in_cwnd == 3

    def test_rtt_tracking(self):
        """Last and minimum RTT are kept."""
        state = ConnectionState(mss=536)

        state.update_rtt(0.3)
        state.update_rtt(0.1)
        state.update_rtt(0.2)

        assert state.last_rtt == 0.2
        assert state.min_rtt == 0.1

    def test_close(self):
        """A closed state refuses further use."""
        state = ConnectionState(mss=536)
        state.ensure_open()

        state.close()
        state.close()

        assert state.closed
        with pytest.raises(InvariantViolation):
            state.ensure_open()

    def test_str(self):
        """String form shows the main fields."""
        text = str(ConnectionState(mss=536, cwnd=1072))
        assert "cwnd=1072" in text
        assert "OPEN" in text
