"""Logging setup for the settlement backend.

Application loggers live under the ``settlement`` namespace. Payment
verification outcomes are additionally written to ``settlement.events`` as
one ``event | key=value | ...`` line each, so they can be grepped or shipped
without parsing free-form messages.
"""

import logging
import sys

ROOT_LOGGER = "settlement"
EVENTS_LOGGER = f"{ROOT_LOGGER}.events"

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``settlement`` namespace."""
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a stderr handler to the ``settlement`` logger.

    Safe to call more than once; an unknown level falls back to INFO.
    """
    logger = logging.getLogger(ROOT_LOGGER)

    log_level = getattr(logging, str(level).upper(), None)
    if not isinstance(log_level, int):
        log_level = logging.INFO
    logger.setLevel(log_level)

    if not any(getattr(h, "_settlement_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._settlement_handler = True
        logger.addHandler(handler)

    return logger


def _short(value: str | None, length: int = 16) -> str:
    if not value:
        return "-"
    return value if len(value) <= length else f"{value[:length]}..."


def log_payment_event(
    event: str,
    chain: str | None,
    transaction_signature: str | None,
    resource_type: str | None,
    resource_id: str | None,
    success: bool,
    code: str | None = None,
    latency_ms: float | None = None,
    **details,
) -> None:
    """Write one payment event line.

    Example::

        verify | chain=solana | tx=5xK3vAbc12345678... | resource=post:abc | success=True | code=- | latency_ms=412
    """
    parts = [
        event,
        f"chain={chain or '-'}",
        f"tx={_short(transaction_signature)}",
        f"resource={resource_type or '-'}:{resource_id or '-'}",
        f"success={success}",
        f"code={code or '-'}",
    ]
    if latency_ms is not None:
        parts.append(f"latency_ms={latency_ms:.0f}")
    for key, value in details.items():
        parts.append(f"{key}={value}")

    logger = logging.getLogger(EVENTS_LOGGER)
    logger.log(logging.INFO if success else logging.WARNING, " | ".join(parts))
