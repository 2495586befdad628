"""
Tests for RTT estimation.
"""

import pytest
from tcpcc.rtt import RttEstimator


class TestRttEstimator:
    """Test RFC 6298 smoothing."""

    def test_no_samples(self):
        """Before any sample only the initial RTO is known."""
        est = RttEstimator()

        assert est.srtt is None
        assert est.rttvar is None
        assert est.rto == RttEstimator.INITIAL_RTO
        assert "N/A" in str(est)

    def test_first_measurement(self):
        """SRTT = R, RTTVAR = R/2."""
        est = RttEstimator()

        assert est.update(0.5)

        assert est.srtt == pytest.approx(0.5)
        assert est.rttvar == pytest.approx(0.25)
        assert est.rto == pytest.approx(1.5)

    def test_subsequent_measurement(self):
        """EWMA update of both SRTT and RTTVAR."""
        est = RttEstimator()
        est.update(0.5)
        est.update(0.3)

        assert est.rttvar == pytest.approx(0.75 * 0.25 + 0.25 * 0.2)
        assert est.srtt == pytest.approx(0.875 * 0.5 + 0.125 * 0.3)
        assert est.rto == pytest.approx(est.srtt + 4 * est.rttvar)

    def test_karn_algorithm(self):
        """Retransmitted segments are never sampled."""
        est = RttEstimator()

        assert not est.update(0.5, retransmitted=True)
        assert est.srtt is None
        assert est.snapshot().samples == 0

    def test_rto_bounds(self):
        """RTO stays within [MIN_RTO, MAX_RTO]."""
        est = RttEstimator()
        est.update(0.001)
        assert est.rto == RttEstimator.MIN_RTO

        est = RttEstimator()
        est.update(100.0)
        assert est.rto == RttEstimator.MAX_RTO

    def test_snapshot(self):
        """Snapshot reflects current values."""
        est = RttEstimator()
        est.update(0.2)

        snap = est.snapshot()

        assert snap.srtt == pytest.approx(0.2)
        assert snap.samples == 1
