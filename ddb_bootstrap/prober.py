from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from .dynamo.client import get_dynamo_client
from .dynamo.store import TableStore
from .errors import StoreCallError

logger = logging.getLogger(__name__)

BACKOFF_CEILING = 8


@dataclass(frozen=True)
class ProbeResult:
    ready: bool
    elapsed_attempts: int
    last_error: Optional[str] = None
    elapsed_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def backoff_delay(interval: float, attempt: int, ceiling: int = BACKOFF_CEILING) -> float:
    """Wait after failed attempt `attempt` (1-based): interval doubled each time, capped at ceiling*interval."""
    return min(interval * (2 ** (attempt - 1)), interval * ceiling)


def _pause(delay: float, cancel: Optional[threading.Event], sleep: Optional[Callable[[float], None]]) -> bool:
    """Wait `delay` seconds; True if cancellation was requested meanwhile."""
    if sleep is not None:
        sleep(delay)
        return bool(cancel is not None and cancel.is_set())
    if cancel is not None:
        return cancel.wait(delay)
    time.sleep(delay)
    return False


def probe(
    endpoint: Optional[str],
    max_attempts: int = 10,
    interval: float = 0.5,
    timeout_per_attempt: float = 2.0,
    *,
    cancel: Optional[threading.Event] = None,
    region: Optional[str] = None,
    credentials: Optional[Mapping[str, str]] = None,
    client_factory: Callable[..., Any] = get_dynamo_client,
    sleep: Optional[Callable[[float], None]] = None,
) -> ProbeResult:
    """
    Poll `endpoint` with ListTables until it answers or attempts run out.

    Any well-formed answer counts as ready, an empty table list included.
    Transport errors, service errors and malformed answers are all retried
    since a cold-starting store can produce any of them.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    if interval < 0:
        raise ValueError("interval must be >= 0")

    client = client_factory(endpoint, region, timeout=timeout_per_attempt, max_attempts=1, credentials=credentials)
    store = TableStore(client)
    started = time.monotonic()
    last_error: Optional[str] = None
    attempt = 0

    while attempt < max_attempts:
        if cancel is not None and cancel.is_set():
            last_error = "cancelled"
            break
        attempt += 1
        try:
            store.ping()
        except StoreCallError as exc:
            last_error = str(exc)
            logger.info(
                "endpoint not ready",
                extra={"endpoint": endpoint, "attempt": attempt, "max_attempts": max_attempts, "error": last_error},
            )
        else:
            elapsed = time.monotonic() - started
            logger.info("endpoint ready", extra={"endpoint": endpoint, "attempt": attempt})
            return ProbeResult(ready=True, elapsed_attempts=attempt, last_error=last_error, elapsed_seconds=elapsed)

        if attempt >= max_attempts:
            break
        if _pause(backoff_delay(interval, attempt), cancel, sleep):
            last_error = "cancelled"
            break

    elapsed = time.monotonic() - started
    logger.warning(
        "endpoint unavailable",
        extra={"endpoint": endpoint, "attempts": attempt, "error": last_error},
    )
    return ProbeResult(ready=False, elapsed_attempts=attempt, last_error=last_error, elapsed_seconds=elapsed)
