"""
Common utilities for the purchase listener.

Modules:
- sui_rpc: Sui JSON-RPC client with retries and rate limiting
- signer: Ed25519 admin signer producing Sui signatures
- health: health counters and the HTTP health/metrics surface
- logs: JSON logging setup
"""

__all__ = [
    "health",
    "logs",
    "rate_limiter",
    "signer",
    "sui_rpc",
]
