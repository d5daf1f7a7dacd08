from __future__ import annotations

import pytest

from common.sui_rpc import SuiError
from listener.resolver import PolicyResolver, policy_from_fields
from state.models import ChainEvent, EventPage, PolicyType


def _resolver(chain) -> PolicyResolver:
    return PolicyResolver(chain, policy_event_type=chain.policy_type)


def test_resolves_live_allowlist_not_creation_snapshot(chain):
    policy_id = chain.add_policy("E1", PolicyType.ALLOWLIST, ["0xA1"])
    # allowlist changed after the creation event was emitted
    chain.objects[policy_id]["allowlist"].append("0xA2")

    policy = _resolver(chain).resolve("E1")

    assert policy is not None
    assert policy.id == policy_id
    assert policy.policy_type is PolicyType.ALLOWLIST
    assert policy.allowlist == ("0xA1", "0xA2")
    assert policy.owner == "0xseller"


def test_returns_none_when_no_policy_for_experience(chain):
    chain.add_policy("OTHER", PolicyType.ALLOWLIST)
    assert _resolver(chain).resolve("E1") is None


def test_returns_none_when_policy_object_is_gone(chain):
    policy_id = chain.add_policy("E1", PolicyType.ALLOWLIST)
    del chain.objects[policy_id]
    assert _resolver(chain).resolve("E1") is None


def test_newest_policy_for_experience_wins(chain):
    chain.add_policy("E1", PolicyType.PRIVATE, policy_id="0xold")
    chain.add_policy("E1", PolicyType.ALLOWLIST, policy_id="0xnew")

    policy = _resolver(chain).resolve("E1")
    assert policy.id == "0xnew"


def test_transport_errors_propagate(chain):
    def boom(*_a, **_k):
        raise SuiError("rpc down")

    chain.query_events = boom
    with pytest.raises(SuiError):
        _resolver(chain).resolve("E1")


def test_pages_through_policy_events():
    class PagedChain:
        def __init__(self) -> None:
            self.cursors = []

        def query_events(self, event_type, *, limit, descending, cursor=None):
            self.cursors.append(cursor)
            if cursor is None:
                other = ChainEvent(sequence=2, event_type=event_type, parsed_json={"experience_id": "X", "policy_id": "0xx"})
                return EventPage(data=[other], next_cursor={"txDigest": "t", "eventSeq": "0"}, has_next_page=True)
            match = ChainEvent(sequence=1, event_type=event_type, parsed_json={"experience_id": "E1", "policy_id": "0xp"})
            return EventPage(data=[match], next_cursor=None, has_next_page=False)

        def get_object(self, object_id):
            return {"objectId": object_id, "experience_id": "E1", "policy_type": "1", "owner": "0xo", "allowlist": []}

    chain = PagedChain()
    policy = PolicyResolver(chain, policy_event_type="0xabc::seal_integration::SEALPolicyCreated", page_size=1).resolve("E1")

    assert policy.id == "0xp"
    assert policy.policy_type is PolicyType.ALLOWLIST
    assert chain.cursors == [None, {"txDigest": "t", "eventSeq": "0"}]


def test_policy_from_fields_accepts_vec_set_allowlist():
    policy = policy_from_fields(
        {
            "id": {"id": "0xp9"},
            "experience_id": "E9",
            "policy_type": 2,
            "owner": "0xo",
            "allowlist": {"type": "0x2::vec_set::VecSet<address>", "fields": {"contents": ["0xb"]}},
        }
    )
    assert policy.id == "0xp9"
    assert policy.policy_type is PolicyType.SUBSCRIPTION
    assert policy.allowlist == ("0xb",)


def test_unknown_policy_type_is_an_error():
    with pytest.raises(ValueError):
        policy_from_fields({"objectId": "0xp", "policy_type": 7, "allowlist": []})
