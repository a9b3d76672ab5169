import logging, os, json, sys

# attributes every LogRecord carries; anything else came in through extra={...}
_STANDARD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime", "extras"}

_HANDLER_NAME = "ddb_bootstrap.stderr"


class _ExtrasFilter(logging.Filter):
    """Pack non-standard record attributes into a JSON `extras` field."""

    def filter(self, record: logging.LogRecord) -> bool:
        extras = {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}
        record.extras = json.dumps(extras, ensure_ascii=False, default=str, sort_keys=True)
        return True


def configure_logging(level=None) -> logging.Logger:
    """
    Install a single stderr handler on the package logger.
    stdout is reserved for the report, so diagnostics never go there.
    """
    root = logging.getLogger("ddb_bootstrap")
    level = (level or os.getenv("LOG_LEVEL", "INFO"))
    if isinstance(level, str):
        level = level.upper()
    root.setLevel(level)
    if any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        return root
    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.addFilter(_ExtrasFilter())
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s | extras=%(extras)s"
    ))
    root.addHandler(handler)
    root.propagate = False
    return root


class _MergingAdapter(logging.LoggerAdapter):
    # per-call extra={...} is merged with the bound extras instead of replacing them
    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def with_extras(logger: logging.Logger, **extras):
    return _MergingAdapter(logger.logger if hasattr(logger, "logger") else logger, extras)
