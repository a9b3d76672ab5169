from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from .differ import Action, Conflict, Create, Skip, render_key_schema
from .dynamo.store import TableStore
from .errors import StoreCallError, TransientCallError
from .logging_setup import with_extras

logger = logging.getLogger(__name__)


def conflict_error(expected: str, actual: str) -> str:
    return f"conflict: expected {expected} got {actual}"


class Outcome(str, Enum):
    APPLIED = "applied"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"


@dataclass(frozen=True)
class ActionResult:
    action: Action
    outcome: Outcome
    error: Optional[str] = None
    attempts: int = 0

    @property
    def name(self) -> str:
        return self.action.name

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.APPLIED, Outcome.ALREADY_EXISTS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.name,
            "action": self.action.kind,
            "outcome": self.outcome.value,
            "error": self.error,
            "attempts": self.attempts,
        }


class Provisioner:
    """
    Applies differ actions to the store.

    Skips and conflicts never touch the network. Creates retry transient
    errors with capped exponential backoff; one failing table never stops
    the others. Results always come back in input order.
    """

    def __init__(
        self,
        store: TableStore,
        *,
        max_retries: int = 5,
        retry_base_delay: float = 0.2,
        retry_max_delay: float = 5.0,
        wait_active: bool = True,
        active_timeout: float = 60.0,
        workers: int = 1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.max_retries = max(0, int(max_retries))
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.wait_active = wait_active
        self.active_timeout = active_timeout
        self.workers = max(1, int(workers))
        self._sleep = sleep

    def retry_delay(self, attempt: int) -> float:
        return min(self.retry_base_delay * (2 ** (attempt - 1)), self.retry_max_delay)

    def apply(self, actions: Sequence[Action], cancel: Optional[threading.Event] = None) -> List[ActionResult]:
        results: List[Optional[ActionResult]] = [None] * len(actions)
        pending: List[int] = []
        for idx, action in enumerate(actions):
            if isinstance(action, Skip):
                results[idx] = ActionResult(action, Outcome.ALREADY_EXISTS)
            elif isinstance(action, Conflict):
                results[idx] = ActionResult(
                    action,
                    Outcome.FAILED,
                    error=conflict_error(action.expected, action.actual),
                )
                logger.error(
                    "key schema conflict",
                    extra={"table": action.name, "expected": action.expected, "actual": action.actual},
                )
            elif isinstance(action, Create):
                pending.append(idx)
            else:
                raise TypeError(f"unknown action {action!r}")

        if pending and self.workers > 1:
            with ThreadPoolExecutor(max_workers=min(self.workers, len(pending))) as executor:
                futures = {executor.submit(self._guarded, actions[i], cancel): i for i in pending}
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
        else:
            for idx in pending:
                results[idx] = self._guarded(actions[idx], cancel)

        return [r for r in results if r is not None]

    def plan(self, actions: Sequence[Action]) -> List[ActionResult]:
        """Dry run: outcomes for skips and conflicts, creates reported as not attempted."""
        out: List[ActionResult] = []
        for action in actions:
            if isinstance(action, Skip):
                out.append(ActionResult(action, Outcome.ALREADY_EXISTS))
            elif isinstance(action, Conflict):
                out.append(ActionResult(
                    action, Outcome.FAILED, error=conflict_error(action.expected, action.actual)
                ))
            else:
                out.append(ActionResult(action, Outcome.NOT_ATTEMPTED, error="dry run"))
        return out

    def _guarded(self, action: Create, cancel: Optional[threading.Event]) -> ActionResult:
        try:
            return self._create(action, cancel)
        except Exception as exc:
            logger.exception("create failed unexpectedly", extra={"table": action.name})
            return ActionResult(action, Outcome.FAILED, error=f"{type(exc).__name__}: {exc}")

    def _resolve_in_use(self, action: Create) -> Optional[ActionResult]:
        """ResourceInUseException: another writer may have created the table first."""
        try:
            current = self.store.describe(action.name)
        except StoreCallError:
            return None
        if current is None:
            return None
        if current.key_schema() == action.spec.key_schema():
            return ActionResult(action, Outcome.ALREADY_EXISTS)
        return ActionResult(
            action,
            Outcome.FAILED,
            error=conflict_error(
                render_key_schema(action.spec.key_schema()), render_key_schema(current.key_schema())
            ),
        )

    def _create(self, action: Create, cancel: Optional[threading.Event]) -> ActionResult:
        log = with_extras(logger, table=action.name)
        if cancel is not None and cancel.is_set():
            log.info("cancelled; create not attempted")
            return ActionResult(action, Outcome.NOT_ATTEMPTED, error="cancelled")

        attempt = 0
        while True:
            attempt += 1
            try:
                self.store.create_table(action.spec)
                break
            except StoreCallError as exc:
                err = exc
                if exc.code == "ResourceInUseException":
                    resolved = self._resolve_in_use(action)
                    if resolved is not None:
                        log.info("table already exists", extra={"outcome": resolved.outcome.value})
                        return ActionResult(resolved.action, resolved.outcome, resolved.error, attempt)
                    err = TransientCallError(str(exc), operation=exc.operation, table_name=exc.table_name, code=exc.code)
                if not err.retryable:
                    log.error("create failed", extra={"error": str(err), "attempt": attempt})
                    return ActionResult(action, Outcome.FAILED, error=str(err), attempts=attempt)
                if attempt > self.max_retries:
                    log.error("create retries exhausted", extra={"error": str(err), "attempt": attempt})
                    return ActionResult(
                        action, Outcome.FAILED, error=f"{err} (gave up after {attempt} attempts)", attempts=attempt
                    )
                if cancel is not None and cancel.is_set():
                    return ActionResult(action, Outcome.FAILED, error=f"cancelled before retry: {err}", attempts=attempt)
                delay = self.retry_delay(attempt)
                log.warning("transient create error, retrying", extra={"error": str(err), "attempt": attempt, "wait": delay})
                self._sleep(delay)
                if cancel is not None and cancel.is_set():
                    return ActionResult(action, Outcome.FAILED, error=f"cancelled before retry: {err}", attempts=attempt)

        if self.wait_active:
            try:
                self.store.wait_until_active(action.name, timeout=self.active_timeout)
            except StoreCallError as exc:
                log.error("table not active", extra={"error": str(exc)})
                return ActionResult(action, Outcome.FAILED, error=str(exc), attempts=attempt)
        log.info("table created", extra={"attempt": attempt})
        return ActionResult(action, Outcome.APPLIED, attempts=attempt)
