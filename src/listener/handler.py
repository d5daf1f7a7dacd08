from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from typing import Mapping, Optional

from common.logs import configure_logging
from common.signer import SignerError

from .config import ConfigError, load_config
from .service import PurchaseListener


logger = logging.getLogger("listener")

EXIT_CONFIG = 2


def _install_signal_handlers(listener: PurchaseListener, grace: float) -> None:
    def _shutdown(signum, frame) -> None:  # noqa: ARG001
        logger.info("Received %s, shutting down gracefully", signal.Signals(signum).name)
        # The loop thread is the one interrupted here, so nothing below may
        # take its locks or join other threads
        listener.request_stop()
        # In-flight RPC calls are not aborted; exit anyway once the grace period is over
        timer = threading.Timer(grace, os._exit, args=(0,))
        timer.daemon = True
        timer.start()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)


def main(environ: Optional[Mapping[str, str]] = None) -> int:
    """
    Entry point for the purchase listener process.

    Environment:
    - ADMIN_PRIVATE_KEY (or PARAM_PREFIX + SSM `admin_private_key`)
    - PACKAGE_ID (fallback: NEXT_PUBLIC_PACKAGE_ID)
    - SUI_NETWORK, SUI_RPC_URL, HEALTH_CHECK_PORT and the tuning knobs in
      `listener.config`

    Returns the process exit code: 0 after a clean stop, 2 on bad
    configuration, 1 on any other startup failure.
    """
    env = os.environ if environ is None else environ
    # Level and file are validated with the rest of the config below
    configure_logging()

    try:
        config = load_config(env)
    except ConfigError as e:
        logger.critical("%s", e, extra={"category": "fatal"})
        return EXIT_CONFIG

    configure_logging(config.log_level, log_file=config.log_file)
    logger.info(
        "Starting purchase event listener service (network %s, package %s)",
        config.network,
        config.package_id,
        extra={"network": config.network},
    )

    try:
        listener = PurchaseListener(config)
    except SignerError as e:
        logger.critical("Invalid admin private key: %s", e, extra={"category": "fatal"})
        return EXIT_CONFIG

    with listener:
        _install_signal_handlers(listener, config.shutdown_grace)
        try:
            listener.start()
        except Exception:
            logger.critical("Fatal error", exc_info=True, extra={"category": "fatal"})
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
