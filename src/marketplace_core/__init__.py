"""
Marketplace Core - matching and reputation for a local buyer/seller platform

Vendors post purchase orders that suppliers bid on, suppliers run auctions
and group buys that vendors join, and every settled transaction moves the
parties' reputation. All state is event sourced; MatchingGateway is the
entry point.
"""

from marketplace_core.gateway import Actor, MatchingGateway
from marketplace_core.kernel.policy import MarketPolicy
from marketplace_core.sweep import DeadlineSweep, SweepResult

__version__ = "0.1.0"

__all__ = [
    "Actor",
    "DeadlineSweep",
    "MarketPolicy",
    "MatchingGateway",
    "SweepResult",
    "__version__",
]
