from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
import logging
import os
import tomllib

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "config" / "bootstrap.toml"


@dataclass(frozen=True)
class StoreConfig:
    endpoint_url: Optional[str]
    region: str


@dataclass(frozen=True)
class ProbeConfig:
    max_attempts: int
    interval_ms: int
    timeout_ms: int


@dataclass(frozen=True)
class ProvisionConfig:
    max_retries: int
    retry_base_ms: int
    retry_max_ms: int
    workers: int
    wait_active: bool
    active_timeout_seconds: int


@dataclass(frozen=True)
class RuntimeConfig:
    store: StoreConfig
    probe: ProbeConfig
    provision: ProvisionConfig


def _default_config() -> RuntimeConfig:
    return RuntimeConfig(
        store=StoreConfig(
            endpoint_url=(os.getenv("DYNAMO_LOCAL_URL") or "").strip() or None,
            region=(os.getenv("AWS_REGION") or "").strip() or "us-west-2",
        ),
        probe=ProbeConfig(max_attempts=10, interval_ms=500, timeout_ms=2000),
        provision=ProvisionConfig(
            max_retries=5,
            retry_base_ms=200,
            retry_max_ms=5000,
            workers=1,
            wait_active=True,
            active_timeout_seconds=60,
        ),
    )


def _safe_int(value: Any, fallback: int, *, minimum: int = 1) -> int:
    if isinstance(value, bool):
        return fallback
    try:
        parsed = int(value)
        return parsed if parsed >= minimum else fallback
    except Exception:
        return fallback


def _safe_bool(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return fallback


def _section(raw: Any, name: str) -> dict:
    val = raw.get(name) if isinstance(raw, dict) else {}
    return val if isinstance(val, dict) else {}


def _resolve_path(config_path: Optional[Path]) -> Path:
    if config_path is not None:
        return Path(config_path)
    env_path = os.getenv("BOOTSTRAP_CONFIG")
    return Path(env_path) if env_path else _DEFAULT_CONFIG_PATH


def load_runtime_config(config_path: Optional[Path] = None) -> RuntimeConfig:
    cfg = _default_config()
    path = _resolve_path(config_path)
    try:
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        logger.warning("Runtime config file not found; using defaults", extra={"path": str(path)})
        return cfg
    except tomllib.TOMLDecodeError:
        logger.exception("Runtime config parse failed; using defaults", extra={"path": str(path)})
        return cfg
    except OSError:
        logger.exception("Runtime config load failed; using defaults", extra={"path": str(path)})
        return cfg

    store_raw = _section(raw, "store")
    probe_raw = _section(raw, "probe")
    prov_raw = _section(raw, "provision")

    endpoint_url = store_raw.get("endpoint_url", cfg.store.endpoint_url)
    if not isinstance(endpoint_url, str) or not endpoint_url.strip():
        endpoint_url = cfg.store.endpoint_url
    else:
        endpoint_url = endpoint_url.strip()

    region = store_raw.get("region", cfg.store.region)
    if not isinstance(region, str) or not region.strip():
        region = cfg.store.region
    else:
        region = region.strip()

    p = cfg.probe
    v = cfg.provision
    return RuntimeConfig(
        store=StoreConfig(endpoint_url=endpoint_url, region=region),
        probe=ProbeConfig(
            max_attempts=_safe_int(probe_raw.get("max_attempts", p.max_attempts), p.max_attempts),
            interval_ms=_safe_int(probe_raw.get("interval_ms", p.interval_ms), p.interval_ms, minimum=0),
            timeout_ms=_safe_int(probe_raw.get("timeout_ms", p.timeout_ms), p.timeout_ms),
        ),
        provision=ProvisionConfig(
            max_retries=_safe_int(prov_raw.get("max_retries", v.max_retries), v.max_retries, minimum=0),
            retry_base_ms=_safe_int(prov_raw.get("retry_base_ms", v.retry_base_ms), v.retry_base_ms, minimum=0),
            retry_max_ms=_safe_int(prov_raw.get("retry_max_ms", v.retry_max_ms), v.retry_max_ms, minimum=0),
            workers=_safe_int(prov_raw.get("workers", v.workers), v.workers),
            wait_active=_safe_bool(prov_raw.get("wait_active", v.wait_active), v.wait_active),
            active_timeout_seconds=_safe_int(
                prov_raw.get("active_timeout_seconds", v.active_timeout_seconds), v.active_timeout_seconds
            ),
        ),
    )
