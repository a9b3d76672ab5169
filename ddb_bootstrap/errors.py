from __future__ import annotations

from typing import Any, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

# Error codes the store returns for conditions that clear up on their own.
# LimitExceededException is what DynamoDB reports when too many tables are
# already in CREATING state.
TRANSIENT_ERROR_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "Throttling",
    "RequestLimitExceeded",
    "LimitExceededException",
    "InternalServerError",
    "InternalFailure",
    "ServiceUnavailable",
    "ServiceUnavailableException",
}


class BootstrapError(Exception):
    """Base error for the bootstrap utility."""


class InvalidSchema(BootstrapError):
    """The schema document is malformed. Carries every problem found."""

    def __init__(self, problems: List[str]) -> None:
        self.problems = list(problems)
        super().__init__("invalid schema: " + "; ".join(self.problems))


class Unavailable(BootstrapError):
    def __init__(
        self,
        message: str,
        *,
        attempts: int = 0,
        last_error: Optional[str] = None,
        result: Optional[Any] = None,
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        # the ProbeResult that gave up, when a prober produced one
        self.result = result
        super().__init__(message)


class InvalidEndpoint(BootstrapError):
    """The endpoint URL was rejected before any request was sent."""


class StoreCallError(BootstrapError):
    """A single call against the store failed."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        table_name: Optional[str] = None,
        code: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.operation = operation
        self.table_name = table_name
        self.code = code
        self.cause = cause
        super().__init__(message)


class TransientCallError(StoreCallError):
    retryable = True


class PermanentCallFailure(StoreCallError):
    retryable = False


def error_code(exc: BaseException) -> Optional[str]:
    if isinstance(exc, ClientError):
        return (exc.response.get("Error") or {}).get("Code")
    return None


def classify_client_error(
    exc: BaseException,
    *,
    operation: Optional[str] = None,
    table_name: Optional[str] = None,
) -> StoreCallError:
    """Map a botocore exception onto TransientCallError / PermanentCallFailure."""
    if isinstance(exc, StoreCallError):
        return exc
    if isinstance(exc, ClientError):
        code = error_code(exc)
        message = (exc.response.get("Error") or {}).get("Message") or str(exc)
        detail = f"{code}: {message}" if code else message
        cls = TransientCallError if code in TRANSIENT_ERROR_CODES else PermanentCallFailure
        return cls(detail, operation=operation, table_name=table_name, code=code, cause=exc)
    if isinstance(exc, BotoCoreError):
        # connection refused, timeouts, partial reads
        return TransientCallError(
            f"{type(exc).__name__}: {exc}",
            operation=operation,
            table_name=table_name,
            code=type(exc).__name__,
            cause=exc,
        )
    return PermanentCallFailure(
        f"{type(exc).__name__}: {exc}",
        operation=operation,
        table_name=table_name,
        cause=exc,
    )
