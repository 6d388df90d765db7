"""Protection policy for guarded operations.

Exposes the pure decision function and the engine that applies it against
persisted state.
"""

from devmode.policy.engine import PolicyEngine, decide, filter_mimes
from devmode.policy.models import Decision, GuardCategory

__all__ = [
    "PolicyEngine",
    "decide",
    "filter_mimes",
    "Decision",
    "GuardCategory",
]
