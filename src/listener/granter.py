from __future__ import annotations

import logging

from common.health import HealthStats
from common.signer import AdminSigner
from common.sui_rpc import SuiClient
from state.models import GrantOutcome, MoveCall, PolicyType, PurchaseEvent

from .resolver import PolicyResolver


logger = logging.getLogger(__name__)

ALLOWLIST_MODULE = "seal_integration"
ALLOWLIST_FUNCTION = "add_to_allowlist"


class AccessGranter:
    """
    Adds a purchase's buyer to the experience's SEAL allowlist.

    Steps short-circuit in order: no policy, policy not of allowlist type,
    buyer already listed. Only a confirmed transaction counts as processed;
    replaying the same purchase after that is a no-op.
    """

    def __init__(
        self,
        client: SuiClient,
        resolver: PolicyResolver,
        signer: AdminSigner,
        stats: HealthStats,
        *,
        package_id: str,
        finality_timeout: float = 60.0,
    ) -> None:
        self._client = client
        self._resolver = resolver
        self._signer = signer
        self._stats = stats
        self.package_id = package_id
        self.finality_timeout = finality_timeout

    def grant(self, event: PurchaseEvent) -> GrantOutcome:
        ctx = {"purchase_id": event.purchase_id, "experience_id": event.experience_id, "buyer": event.buyer}

        policy = self._resolver.resolve(event.experience_id)
        if policy is None:
            logger.warning(
                "No SEAL policy found for experience %s",
                event.experience_id,
                extra={**ctx, "category": "skip"},
            )
            return GrantOutcome.NO_POLICY

        ctx["policy_id"] = policy.id
        logger.info(
            "Found SEAL policy %s (%s)",
            policy.id,
            policy.policy_type.label,
            extra={**ctx, "policy_type": policy.policy_type.label},
        )

        if policy.policy_type is not PolicyType.ALLOWLIST:
            logger.info(
                "Policy %s is %s, skipping automatic access grant",
                policy.id,
                policy.policy_type.label,
                extra={**ctx, "category": "skip"},
            )
            return GrantOutcome.NOT_ALLOWLIST

        if policy.has_member(event.buyer):
            logger.info("Buyer already in allowlist, skipping", extra={**ctx, "category": "skip"})
            return GrantOutcome.ALREADY_MEMBER

        digest = self.add_to_allowlist(policy.id, event.buyer)
        self._stats.record_event(event.purchase_id)
        logger.info("Added buyer to allowlist", extra={**ctx, "digest": digest})
        return GrantOutcome.GRANTED

    def add_to_allowlist(self, policy_id: str, buyer: str) -> str:
        """Submit `add_to_allowlist(policy, buyer)` and block until it is confirmed."""
        call = MoveCall(
            package=self.package_id,
            module=ALLOWLIST_MODULE,
            function=ALLOWLIST_FUNCTION,
            arguments=[policy_id, buyer],
        )
        digest = self._client.sign_and_execute_transaction(call, self._signer)
        self._client.wait_for_transaction(digest, timeout=self.finality_timeout)
        return digest
