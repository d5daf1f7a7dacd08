from __future__ import annotations

import os
from typing import Dict, Iterable, Literal, Mapping, Optional

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator


# Environment configuration
ENV_ADMIN_PRIVATE_KEY = "ADMIN_PRIVATE_KEY"
ENV_PACKAGE_ID = "PACKAGE_ID"
ENV_NETWORK = "SUI_NETWORK"
ENV_RPC_URL = "SUI_RPC_URL"
ENV_HEALTH_PORT = "HEALTH_CHECK_PORT"
ENV_POLL_INTERVAL = "POLL_INTERVAL_SECONDS"
ENV_BACKOFF_INTERVAL = "BACKOFF_INTERVAL_SECONDS"
ENV_EVENT_LIMIT = "EVENT_LIMIT"
ENV_POLICY_SCAN_LIMIT = "POLICY_SCAN_LIMIT"
ENV_SHUTDOWN_GRACE = "SHUTDOWN_GRACE_SECONDS"
ENV_LOG_LEVEL = "LOG_LEVEL"
ENV_LOG_FILE = "LOG_FILE"
ENV_PARAM_PREFIX = "PARAM_PREFIX"

# Name used by the marketplace frontend's env files
FALLBACK_ENV_PACKAGE_ID = "NEXT_PUBLIC_PACKAGE_ID"

SSM_ADMIN_PRIVATE_KEY = "admin_private_key"


class ConfigError(RuntimeError):
    """Configuration is missing or invalid; the service must not start."""


class ListenerConfig(BaseModel):
    """Validated runtime configuration for the purchase listener."""

    admin_private_key: SecretStr
    package_id: str
    network: Literal["mainnet", "testnet", "devnet", "localnet"] = "testnet"
    rpc_url: Optional[str] = None
    health_port: int = Field(default=3001, ge=1, le=65535)
    poll_interval: float = Field(default=5.0, gt=0)
    backoff_interval: float = Field(default=10.0, gt=0)
    event_limit: int = Field(default=50, ge=1, le=1000)
    policy_scan_limit: int = Field(default=100, ge=1, le=1000)
    shutdown_grace: float = Field(default=1.0, ge=0)
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @field_validator("package_id")
    @classmethod
    def _check_package_id(cls, v: str) -> str:
        v = v.strip()
        body = v[2:] if v.lower().startswith("0x") else ""
        if not body or len(body) > 64:
            raise ValueError("package id must be a 0x-prefixed hex object id")
        try:
            int(body, 16)
        except ValueError:
            raise ValueError("package id must be a 0x-prefixed hex object id") from None
        return v

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return v

    @property
    def purchase_event_type(self) -> str:
        return f"{self.package_id}::marketplace::ExperiencePurchased"

    @property
    def policy_event_type(self) -> str:
        return f"{self.package_id}::seal_integration::SEALPolicyCreated"


def _getenv(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    v = env.get(name)
    return v if v not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise ConfigError(f"Missing required configuration: {what}")
    return v


def _load_ssm_params(prefix: str, names: Iterable[str]) -> Dict[str, Optional[str]]:
    import boto3
    from botocore.exceptions import ClientError

    ssm = boto3.client("ssm")
    out: Dict[str, Optional[str]] = {k: None for k in names}
    for name in names:
        full = f"{prefix}{name}"
        try:
            resp = ssm.get_parameter(Name=full, WithDecryption=True)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("ParameterNotFound", "AccessDeniedException"):
                out[name] = None
                continue
            raise
        val = resp.get("Parameter", {}).get("Value")
        out[name] = val if isinstance(val, str) and val != "" else None
    return out


def load_config(environ: Optional[Mapping[str, str]] = None) -> ListenerConfig:
    """
    Build ListenerConfig from environment variables.

    - ADMIN_PRIVATE_KEY, else `{PARAM_PREFIX}admin_private_key` from SSM
      when PARAM_PREFIX is set.
    - PACKAGE_ID, falling back to NEXT_PUBLIC_PACKAGE_ID.
    - Everything else is optional (see ListenerConfig defaults).

    Raises ConfigError when a required value is missing or malformed.
    """
    env = os.environ if environ is None else environ

    admin_key = _getenv(env, ENV_ADMIN_PRIVATE_KEY)
    prefix = _getenv(env, ENV_PARAM_PREFIX)
    if not admin_key and prefix:
        params = _load_ssm_params(prefix, [SSM_ADMIN_PRIVATE_KEY])
        admin_key = params.get(SSM_ADMIN_PRIVATE_KEY)
    admin_key = _require(
        admin_key,
        ENV_ADMIN_PRIVATE_KEY if not prefix else f"{ENV_ADMIN_PRIVATE_KEY} or {prefix}{SSM_ADMIN_PRIVATE_KEY}",
    )
    package_id = _require(
        _getenv(env, ENV_PACKAGE_ID) or _getenv(env, FALLBACK_ENV_PACKAGE_ID),
        ENV_PACKAGE_ID,
    )

    raw = {
        "admin_private_key": admin_key,
        "package_id": package_id,
        "network": _getenv(env, ENV_NETWORK),
        "rpc_url": _getenv(env, ENV_RPC_URL),
        "health_port": _getenv(env, ENV_HEALTH_PORT),
        "poll_interval": _getenv(env, ENV_POLL_INTERVAL),
        "backoff_interval": _getenv(env, ENV_BACKOFF_INTERVAL),
        "event_limit": _getenv(env, ENV_EVENT_LIMIT),
        "policy_scan_limit": _getenv(env, ENV_POLICY_SCAN_LIMIT),
        "shutdown_grace": _getenv(env, ENV_SHUTDOWN_GRACE),
        "log_level": _getenv(env, ENV_LOG_LEVEL),
        "log_file": _getenv(env, ENV_LOG_FILE),
    }
    try:
        return ListenerConfig.model_validate({k: v for k, v in raw.items() if v is not None})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from e
