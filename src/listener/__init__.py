"""
Purchase listener: grants SEAL allowlist access to buyers of marketplace
experiences by reacting to `ExperiencePurchased` events.
"""

from .config import ConfigError, ListenerConfig, load_config
from .granter import AccessGranter
from .poller import EventPoller, PollerState
from .resolver import PolicyResolver
from .service import PurchaseListener

__all__ = [
    "AccessGranter",
    "ConfigError",
    "EventPoller",
    "ListenerConfig",
    "PolicyResolver",
    "PollerState",
    "PurchaseListener",
    "load_config",
]
