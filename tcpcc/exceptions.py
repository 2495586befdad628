"""
Engine errors.

Congestion-window corruption can turn into unbounded sending, so the engine
never repairs a broken invariant on the fly. It raises, and the connection
that hit it stops processing events.
"""


class InvariantViolation(RuntimeError):
    """
    A programming error in the code driving the engine.

    Raised for hooks called on a closed connection, a zero MSS, a strategy
    notified before the stored congestion state was updated, or a rate-based
    hook invoked on a strategy that does not implement it.
    """
