from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests

from .differ import Create, diff
from .dynamo.client import get_dynamo_client
from .dynamo.store import TableStore
from .errors import StoreCallError, Unavailable
from .prober import ProbeResult, probe
from .provisioner import ActionResult, Outcome, Provisioner
from .runtime_config import RuntimeConfig
from .schema import Descriptor, ExistingTable

logger = logging.getLogger(__name__)


class State(str, Enum):
    IDLE = "idle"
    PROBING = "probing"
    READY = "ready"
    PROBE_FAILED = "probe_failed"
    DIFFING = "diffing"
    PROVISIONING = "provisioning"
    DONE = "done"


class Status(str, Enum):
    SUCCESS = "success"
    PROBE_FAILED = "probe_failed"
    PROVISIONING_FAILED = "provisioning_failed"


@dataclass
class Report:
    probe: ProbeResult
    results: List[ActionResult] = field(default_factory=list)
    status: Status = Status.SUCCESS
    states: List[State] = field(default_factory=list)
    error: Optional[str] = None
    dry_run: bool = False

    def counts(self) -> Dict[str, int]:
        out = {o.value: 0 for o in Outcome}
        for r in self.results:
            out[r.outcome.value] += 1
        return out

    def summary(self) -> Dict[str, Any]:
        return {
            "summary": True,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "probe": self.probe.to_dict(),
            "outcomes": self.counts(),
            "error": self.error,
        }

    def to_lines(self) -> List[str]:
        """One JSON line per table, then one summary line."""
        lines = [json.dumps(r.to_dict(), ensure_ascii=False) for r in self.results]
        lines.append(json.dumps(self.summary(), ensure_ascii=False, default=str))
        return lines


@dataclass(frozen=True)
class BootstrapSettings:
    endpoint: Optional[str] = None
    region: Optional[str] = None
    credentials: Optional[Mapping[str, str]] = None
    max_attempts: int = 10
    interval: float = 0.5
    timeout: float = 2.0
    max_retries: int = 5
    retry_base_delay: float = 0.2
    retry_max_delay: float = 5.0
    workers: int = 1
    wait_active: bool = True
    active_timeout: float = 60.0
    dry_run: bool = False

    @classmethod
    def from_config(cls, cfg: RuntimeConfig, **overrides: Any) -> "BootstrapSettings":
        """Config values first; non-None overrides (CLI flags) win."""
        base = cls(
            endpoint=cfg.store.endpoint_url,
            region=cfg.store.region,
            max_attempts=cfg.probe.max_attempts,
            interval=cfg.probe.interval_ms / 1000.0,
            timeout=cfg.probe.timeout_ms / 1000.0,
            max_retries=cfg.provision.max_retries,
            retry_base_delay=cfg.provision.retry_base_ms / 1000.0,
            retry_max_delay=cfg.provision.retry_max_ms / 1000.0,
            workers=cfg.provision.workers,
            wait_active=cfg.provision.wait_active,
            active_timeout=float(cfg.provision.active_timeout_seconds),
        )
        return replace(base, **{k: v for k, v in overrides.items() if v is not None})


def _slack(msg: str, *, level: str = "info", extra: Optional[Dict[str, Any]] = None) -> None:
    webhook = os.environ.get("SLACK_WEBHOOK_URL")
    if not webhook:
        return
    payload = {"text": f"*[{level.upper()}]* {msg}"}
    if extra:
        payload["attachments"] = [
            {"text": "```" + json.dumps(extra, ensure_ascii=False, indent=2, default=str) + "```"}
        ]
    try:
        requests.post(webhook, json=payload, timeout=10)
    except Exception:
        logger.debug("Slack send failed", exc_info=True)


class Bootstrapper:
    """
    Sequences probe -> snapshot/diff -> provision for one run.

    IDLE -> PROBING -> READY -> DIFFING -> PROVISIONING -> DONE, or
    IDLE -> PROBING -> PROBE_FAILED -> DONE. Each run yields one Report.
    """

    def __init__(
        self,
        settings: BootstrapSettings,
        *,
        prober: Callable[..., ProbeResult] = probe,
        client_factory: Callable[..., Any] = get_dynamo_client,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.prober = prober
        self.client_factory = client_factory
        self._sleep = sleep
        self._states: List[State] = []

    def _enter(self, state: State) -> None:
        if state in self._states:
            raise RuntimeError(f"state {state.value} re-entered")
        self._states.append(state)
        logger.info("bootstrap state", extra={"state": state.value})

    def _probe(self, cancel: Optional[threading.Event]) -> ProbeResult:
        s = self.settings
        result = self.prober(
            s.endpoint,
            s.max_attempts,
            s.interval,
            s.timeout,
            cancel=cancel,
            region=s.region,
            credentials=s.credentials,
            client_factory=self.client_factory,
        )
        if not result.ready:
            raise Unavailable(
                f"endpoint {s.endpoint or '(default)'} not ready after {result.elapsed_attempts} attempts: {result.last_error}",
                attempts=result.elapsed_attempts,
                last_error=result.last_error,
                result=result,
            )
        return result

    def _store(self) -> TableStore:
        s = self.settings
        client = self.client_factory(s.endpoint, s.region, timeout=s.timeout, max_attempts=1, credentials=s.credentials)
        return TableStore(client)

    def _fetch_existing(
        self, store: TableStore, descriptor: Descriptor, cancel: Optional[threading.Event] = None
    ) -> Dict[str, ExistingTable]:
        attempt = 0
        while True:
            attempt += 1
            try:
                return store.snapshot(descriptor.names)
            except StoreCallError as exc:
                if not exc.retryable or attempt > self.settings.max_retries:
                    raise
                if cancel is not None and cancel.is_set():
                    raise
                delay = min(self.settings.retry_base_delay * (2 ** (attempt - 1)), self.settings.retry_max_delay)
                logger.warning("snapshot failed, retrying", extra={"error": str(exc), "attempt": attempt, "wait": delay})
                self._sleep(delay)
                if cancel is not None and cancel.is_set():
                    raise

    def _provisioner(self, store: TableStore) -> Provisioner:
        s = self.settings
        return Provisioner(
            store,
            max_retries=s.max_retries,
            retry_base_delay=s.retry_base_delay,
            retry_max_delay=s.retry_max_delay,
            wait_active=s.wait_active,
            active_timeout=s.active_timeout,
            workers=s.workers,
            sleep=self._sleep,
        )

    def run(self, descriptor: Descriptor, cancel: Optional[threading.Event] = None) -> Report:
        if self._states:
            raise RuntimeError("Bootstrapper instances run once")
        self._enter(State.IDLE)
        self._enter(State.PROBING)
        try:
            probe_result = self._probe(cancel)
        except Unavailable as exc:
            self._enter(State.PROBE_FAILED)
            self._enter(State.DONE)
            probe_result = exc.result or ProbeResult(
                ready=False, elapsed_attempts=exc.attempts, last_error=exc.last_error
            )
            report = Report(
                probe=probe_result,
                status=Status.PROBE_FAILED,
                states=list(self._states),
                error=str(exc),
                dry_run=self.settings.dry_run,
            )
            self._finish(report)
            return report

        self._enter(State.READY)
        self._enter(State.DIFFING)
        store = self._store()
        try:
            existing = self._fetch_existing(store, descriptor, cancel)
        except StoreCallError as exc:
            logger.error("could not read existing schema", extra={"error": str(exc)})
            self._enter(State.DONE)
            report = Report(
                probe=probe_result,
                results=[ActionResult(Create(spec), Outcome.NOT_ATTEMPTED) for spec in descriptor],
                status=Status.PROVISIONING_FAILED,
                states=list(self._states),
                error=f"snapshot failed: {exc}",
                dry_run=self.settings.dry_run,
            )
            self._finish(report)
            return report

        actions = diff(descriptor, existing)
        logger.info(
            "schema diff",
            extra={"plan": {a.name: a.kind for a in actions}},
        )

        provisioner = self._provisioner(store)
        if self.settings.dry_run:
            results = provisioner.plan(actions)
        else:
            self._enter(State.PROVISIONING)
            results = provisioner.apply(actions, cancel=cancel)
        self._enter(State.DONE)

        failed = any(
            r.outcome == Outcome.FAILED or (r.outcome == Outcome.NOT_ATTEMPTED and not self.settings.dry_run)
            for r in results
        )
        report = Report(
            probe=probe_result,
            results=results,
            status=Status.PROVISIONING_FAILED if failed else Status.SUCCESS,
            states=list(self._states),
            dry_run=self.settings.dry_run,
        )
        self._finish(report)
        return report

    def _finish(self, report: Report) -> None:
        level = "info" if report.status == Status.SUCCESS else "error"
        logger.log(
            logging.INFO if level == "info" else logging.ERROR,
            "bootstrap finished",
            extra={"status": report.status.value, "outcomes": report.counts()},
        )
        _slack(f"Schema bootstrap finished: {report.status.value}", level=level, extra=report.summary())


def run_bootstrap(
    descriptor: Descriptor,
    settings: BootstrapSettings,
    cancel: Optional[threading.Event] = None,
    **kwargs: Any,
) -> Report:
    return Bootstrapper(settings, **kwargs).run(descriptor, cancel=cancel)
