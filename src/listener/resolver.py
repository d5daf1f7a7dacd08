from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from common.sui_rpc import SuiClient
from state.models import AccessPolicy, PolicyType


logger = logging.getLogger(__name__)


def _address_list(value: Any) -> List[str]:
    """Accept a plain `vector<address>` or a VecSet-style `{fields: {contents: [...]}}`."""
    if value is None:
        return []
    if isinstance(value, dict):
        inner = value.get("fields", value)
        value = inner.get("contents", []) if isinstance(inner, dict) else []
    if not isinstance(value, list):
        raise ValueError(f"Unexpected allowlist shape: {type(value).__name__}")
    return [str(a) for a in value]


def policy_from_fields(fields: Dict[str, Any]) -> AccessPolicy:
    """Build an AccessPolicy from a policy object's live Move fields."""
    object_id = fields.get("objectId")
    if isinstance(fields.get("id"), dict):
        # UID renders as {"id": "0x..."}
        object_id = object_id or fields["id"].get("id")
    return AccessPolicy(
        id=str(object_id),
        experience_id=str(fields.get("experience_id", "")),
        policy_type=PolicyType(int(fields["policy_type"])),
        owner=str(fields.get("owner", "")),
        allowlist=_address_list(fields.get("allowlist")),
    )


class PolicyResolver:
    """
    Maps an experience id to its SEAL access policy.

    The policy id comes from the `SEALPolicyCreated` event stream; the policy
    itself is always read live from the object so the allowlist reflects
    grants made since creation.
    """

    def __init__(
        self,
        client: SuiClient,
        *,
        policy_event_type: str,
        page_size: int = 100,
        max_pages: int = 10,
    ) -> None:
        self._client = client
        self.policy_event_type = policy_event_type
        self.page_size = page_size
        self.max_pages = max_pages

    def find_policy_id(self, experience_id: str) -> Optional[str]:
        """Newest `SEALPolicyCreated` entry for the experience wins."""
        cursor = None
        for _ in range(self.max_pages):
            page = self._client.query_events(
                self.policy_event_type,
                limit=self.page_size,
                descending=True,
                cursor=cursor,
            )
            for ev in page.data:
                if ev.parsed_json.get("experience_id") == experience_id:
                    policy_id = ev.parsed_json.get("policy_id")
                    if policy_id:
                        return str(policy_id)
            if not page.has_next_page or page.next_cursor is None:
                break
            cursor = page.next_cursor
        return None

    def resolve(self, experience_id: str) -> Optional[AccessPolicy]:
        """
        Return the live policy for `experience_id`, or None when the
        experience has no policy (or the object no longer exists).
        RPC errors propagate.
        """
        policy_id = self.find_policy_id(experience_id)
        if policy_id is None:
            return None

        fields = self._client.get_object(policy_id)
        if fields is None:
            logger.warning(
                "Policy object %s for experience %s is missing or not a Move object",
                policy_id,
                experience_id,
                extra={"policy_id": policy_id, "experience_id": experience_id},
            )
            return None
        fields.setdefault("objectId", policy_id)
        return policy_from_fields(fields)
