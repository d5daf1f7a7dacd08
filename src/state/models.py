from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


def normalize_address(address: str) -> str:
    """Canonical form used for allowlist membership: trimmed, lower-case."""
    return address.strip().lower()


class PolicyType(IntEnum):
    """SEAL policy kinds, matching the on-chain `u8` discriminant."""

    PRIVATE = 0
    ALLOWLIST = 1
    SUBSCRIPTION = 2

    @property
    def label(self) -> str:
        return self.name.capitalize()


class PurchaseEvent(BaseModel):
    """
    `ExperiencePurchased` event payload.

    Fields
    - purchase_id: id of the purchase receipt object.
    - experience_id: id of the experience that was bought.
    - buyer / seller: Sui addresses.
    - price: amount paid in MIST (1 SUI = 10^9 MIST). The RPC encodes `u64`
      values as strings; pydantic coerces them.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    purchase_id: str
    experience_id: str
    buyer: str
    seller: str
    price: int = Field(ge=0)

    @property
    def price_sui(self) -> float:
        return self.price / 1e9


class AccessPolicy(BaseModel):
    """Live state of a SEAL policy object."""

    model_config = ConfigDict(frozen=True)

    id: str
    experience_id: str
    policy_type: PolicyType
    owner: str
    allowlist: Tuple[str, ...] = ()

    def has_member(self, address: str) -> bool:
        needle = normalize_address(address)
        return any(normalize_address(a) == needle for a in self.allowlist)


# (timestamp_ms, tx_digest, event_seq); see SuiClient.query_events
EventSequence = Tuple[int, str, int]


@dataclass(frozen=True)
class ChainEvent:
    """One event as returned by the chain client, with a totally ordered `sequence`."""

    sequence: Any
    event_type: str
    parsed_json: Dict[str, Any] = field(default_factory=dict)
    tx_digest: Optional[str] = None
    timestamp_ms: Optional[int] = None


@dataclass(frozen=True)
class EventPage:
    data: List[ChainEvent]
    next_cursor: Optional[Dict[str, Any]] = None
    has_next_page: bool = False


@dataclass(frozen=True)
class MoveCall:
    """A single Move function call to be turned into a transaction."""

    package: str
    module: str
    function: str
    arguments: List[Any] = field(default_factory=list)
    type_arguments: List[str] = field(default_factory=list)

    @property
    def target(self) -> str:
        return f"{self.package}::{self.module}::{self.function}"


class GrantOutcome(str, Enum):
    NO_POLICY = "no_policy"
    NOT_ALLOWLIST = "not_allowlist"
    ALREADY_MEMBER = "already_member"
    GRANTED = "granted"


class HealthSnapshot(BaseModel):
    """Point-in-time copy of the health counters, serialized with camelCase keys."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    uptime_seconds: int
    events_processed: int = Field(serialization_alias="eventsProcessed")
    errors: int
    last_event_processed: Optional[str] = Field(default=None, serialization_alias="lastEventProcessed")
    last_error: Optional[str] = Field(default=None, serialization_alias="lastError")
