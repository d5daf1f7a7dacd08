from __future__ import annotations

import logging
from typing import Optional

from common.health import HealthServer, HealthStats
from common.signer import AdminSigner
from common.sui_rpc import SuiClient

from .config import ListenerConfig
from .granter import AccessGranter
from .poller import EventPoller
from .resolver import PolicyResolver


logger = logging.getLogger(__name__)


class PurchaseListener:
    """
    Grants SEAL allowlist access to buyers of marketplace experiences.

    Owns the admin signer, the RPC client and the health counters, and wires
    resolver, granter and poller together. `start()` blocks until `stop()`.
    """

    def __init__(
        self,
        config: ListenerConfig,
        *,
        client: Optional[SuiClient] = None,
        signer: Optional[AdminSigner] = None,
        stats: Optional[HealthStats] = None,
        monitor: Optional[HealthServer] = None,
    ) -> None:
        self.config = config
        self.signer = signer or AdminSigner.from_encoded(config.admin_private_key.get_secret_value())
        self._owns_client = client is None
        if client is None:
            client = SuiClient(config.rpc_url) if config.rpc_url else SuiClient.for_network(config.network)
        self.client = client
        self.stats = stats or HealthStats()
        self.monitor = monitor or HealthServer(self.stats, port=config.health_port)

        self.resolver = PolicyResolver(
            self.client,
            policy_event_type=config.policy_event_type,
            page_size=config.policy_scan_limit,
        )
        self.granter = AccessGranter(
            self.client,
            self.resolver,
            self.signer,
            self.stats,
            package_id=config.package_id,
        )
        self.poller = EventPoller(
            self.client,
            self.granter.grant,
            self.stats,
            event_type=config.purchase_event_type,
            limit=config.event_limit,
            interval=config.poll_interval,
            backoff_interval=config.backoff_interval,
            monitor=self.monitor,
        )

        logger.info(
            "Purchase event listener initialized (package %s, admin %s)",
            config.package_id,
            self.signer.address,
            extra={"network": config.network},
        )

    @property
    def running(self) -> bool:
        return self.poller.running

    def start(self) -> None:
        self.poller.start()

    def stop(self) -> None:
        self.poller.stop()

    def request_stop(self) -> None:
        """Signal-safe stop: sets the poller's stop event and returns."""
        self.poller.request_stop()

    def close(self) -> None:
        """Stop, drop the admin key and release the HTTP client."""
        if self.running:
            self.stop()
        self.signer.close()
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "PurchaseListener":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
