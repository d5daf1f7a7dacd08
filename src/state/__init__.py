"""
Data types shared by the listener: chain events, SEAL policies and the
health snapshot served over HTTP.
"""

from .models import (
    AccessPolicy,
    ChainEvent,
    EventPage,
    GrantOutcome,
    HealthSnapshot,
    MoveCall,
    PolicyType,
    PurchaseEvent,
    normalize_address,
)

__all__ = [
    "AccessPolicy",
    "ChainEvent",
    "EventPage",
    "GrantOutcome",
    "HealthSnapshot",
    "MoveCall",
    "PolicyType",
    "PurchaseEvent",
    "normalize_address",
]
