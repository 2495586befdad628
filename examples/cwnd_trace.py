#!/usr/bin/env python3
"""
Congestion Window Trace Example

Drives the congestion engine with a synthetic bulk transfer and writes the
congestion window over time, one "time cwnd" pair per line, ready for gnuplot.

Each round trip the sender has cwnd/MSS segments in flight and gets one ACK
per segment back. A segment is lost with the given probability; a loss is
seen as three duplicate ACKs (fast retransmit), or occasionally as a
retransmission timeout.

Usage:
    python cwnd_trace.py --algorithm newreno --mss 536 --rounds 200 -o cwnd.dat
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import argparse
import logging
import random

from tcpcc import (
    ConnectionDriver, CongestionConfig, CongestionSignal, CongestionState,
    available_algorithms
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)


def run_transfer(driver: ConnectionDriver, rounds: int, rtt: float,
                 loss_rate: float, timeout_share: float, rng: random.Random):
    """
    Simulate bulk transfer round by round.

    Returns:
        List of (time, cwnd) samples
    """
    mss = driver.state.mss
    now = 0.0
    samples = [(now, driver.cwnd)]

    for _ in range(rounds):
        segments = max(1, driver.cwnd // mss)
        lost = rng.random() < loss_rate * segments

        for i in range(segments):
            in_flight = (segments - i - 1) * mss
            if lost and i == segments // 2:
                if rng.random() < timeout_share:
                    driver.on_congestion_event(CongestionSignal.RETRANSMIT_TIMEOUT,
                                               (segments - i) * mss)
                else:
                    for _ in range(3):
                        driver.on_duplicate_ack((segments - i) * mss)
                break
            driver.on_ack_received(1, rtt, in_flight)

        now += rtt
        if driver.cong_state != CongestionState.OPEN:
            # Retransmission repaired within the round trip
            driver.on_recovery_complete()
        samples.append((now, driver.cwnd))

    return samples


def main():
    parser = argparse.ArgumentParser(description="Trace the congestion window of a bulk transfer")
    parser.add_argument("--algorithm", choices=available_algorithms(), default="newreno")
    parser.add_argument("--mss", type=int, default=536)
    parser.add_argument("--initial-window", type=int, default=1, help="Initial window in segments")
    parser.add_argument("--rounds", type=int, default=200, help="Round trips to simulate")
    parser.add_argument("--rtt", type=float, default=0.004, help="Round-trip time in seconds")
    parser.add_argument("--loss-rate", type=float, default=0.002, help="Per-segment loss probability")
    parser.add_argument("--timeout-share", type=float, default=0.1,
                        help="Fraction of losses detected by timeout")
    parser.add_argument("--seed", type=int, default=1)
    parser.add_argument("-o", "--output", default="cwnd.dat")
    args = parser.parse_args()

    driver = ConnectionDriver(CongestionConfig(
        mss=args.mss,
        initial_window=args.initial_window,
        algorithm=args.algorithm,
    ))

    samples = run_transfer(driver, args.rounds, args.rtt, args.loss_rate,
                           args.timeout_share, random.Random(args.seed))

    with open(args.output, "w") as f:
        for t, cwnd in samples:
            f.write(f"{t:.3f} {cwnd}\n")

    stats = driver.get_statistics()
    print(f"Algorithm: {stats['algorithm']}")
    print(f"Final cwnd: {stats['cwnd']} bytes, ssthresh: {stats['ssthresh']} bytes")
    print(f"State transitions: {stats['state_transitions']}, window changes: {stats['cwnd_changes']}")
    print(f"Trace written to {args.output}")

    driver.close()


if __name__ == "__main__":
    main()
