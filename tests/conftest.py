import os
import sys
from types import SimpleNamespace

import pytest


def pytest_configure():
    # Ensure `src/` is importable as top-level for `common.*`, `listener.*` imports
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


PACKAGE_ID = "0xabc"


class FakeChain:
    """In-memory stand-in for SuiClient that applies `add_to_allowlist` calls to its objects."""

    def __init__(self, package_id: str = PACKAGE_ID) -> None:
        self.package_id = package_id
        self.purchases = []
        self.policy_events = []
        self.objects = {}
        self.executed = []
        self.waited = []
        self.queries = []
        self.fetch_failures = 0
        self.fail_buyers = set()
        self._policy_count = 0

    @property
    def purchase_type(self) -> str:
        return f"{self.package_id}::marketplace::ExperiencePurchased"

    @property
    def policy_type(self) -> str:
        return f"{self.package_id}::seal_integration::SEALPolicyCreated"

    # --------------- Builders ---------------
    def add_policy(self, experience_id: str, policy_type: int, allowlist=None, *, policy_id=None) -> str:
        from state.models import ChainEvent

        self._policy_count += 1
        policy_id = policy_id or f"0xp{self._policy_count}"
        self.objects[policy_id] = {
            "id": {"id": policy_id},
            "experience_id": experience_id,
            "policy_type": policy_type,
            "owner": "0xseller",
            "allowlist": list(allowlist or []),
        }
        self.policy_events.append(
            ChainEvent(
                sequence=(self._policy_count, f"ptx{self._policy_count}", 0),
                event_type=self.policy_type,
                parsed_json={"policy_id": policy_id, "experience_id": experience_id, "policy_type": policy_type},
            )
        )
        return policy_id

    def add_purchase(
        self, seq, experience_id: str, buyer: str, *, purchase_id=None, price="1000000000", timestamp_ms=None
    ):
        from state.models import ChainEvent

        event = ChainEvent(
            sequence=seq,
            event_type=self.purchase_type,
            parsed_json={
                "purchase_id": purchase_id or f"0xpurchase{seq}",
                "experience_id": experience_id,
                "buyer": buyer,
                "seller": "0xseller",
                "price": price,
            },
            timestamp_ms=timestamp_ms,
        )
        self.purchases.append(event)
        return event

    def allowlist(self, policy_id: str):
        return list(self.objects[policy_id]["allowlist"])

    # --------------- Client surface ---------------
    def query_events(self, event_type, *, limit=50, descending=True, cursor=None):
        from common.sui_rpc import SuiError
        from state.models import EventPage

        self.queries.append(event_type)
        if event_type == self.purchase_type:
            if self.fetch_failures > 0:
                self.fetch_failures -= 1
                raise SuiError("connection reset by peer")
            return EventPage(data=list(self.purchases)[:limit])
        if event_type == self.policy_type:
            events = sorted(self.policy_events, key=lambda e: e.sequence, reverse=descending)
            return EventPage(data=events[:limit])
        return EventPage(data=[])

    def get_object(self, object_id):
        fields = self.objects.get(object_id)
        if fields is None:
            return None
        out = dict(fields)
        out["allowlist"] = list(fields["allowlist"])
        out["objectId"] = object_id
        return out

    def sign_and_execute_transaction(self, call, signer):
        from common.sui_rpc import SuiTransactionError

        policy_id, buyer = call.arguments
        self.executed.append(call)
        if buyer in self.fail_buyers:
            raise SuiTransactionError(f"MoveAbort for {buyer}", digest=f"tx{len(self.executed)}")
        self.objects[policy_id]["allowlist"].append(buyer)
        return f"tx{len(self.executed)}"

    def wait_for_transaction(self, digest, *, timeout=60.0, poll_interval=2.0):
        self.waited.append(digest)
        return {"digest": digest, "effects": {"status": {"status": "success"}}}


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def admin_signer():
    return SimpleNamespace(address="0x" + "ad" * 32)


@pytest.fixture
def stats():
    from common.health import HealthStats

    return HealthStats()
