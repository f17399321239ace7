"""Session-based liveness reconciliation for externally sourced listings."""
from .controller import PassResult, SessionController, SessionState, run_pass
from .executor import BatchExecutor
from .retry import Confirmed, DefinitiveFailure, NotPresent, RetryPolicy
from .tracker import LivenessTracker, SweepReport

__all__ = [
    "BatchExecutor",
    "Confirmed",
    "DefinitiveFailure",
    "LivenessTracker",
    "NotPresent",
    "PassResult",
    "RetryPolicy",
    "SessionController",
    "SessionState",
    "SweepReport",
    "run_pass",
]
