"""Console logging and amount helpers for scripts."""

import logging
import os
from decimal import Decimal, InvalidOperation
from pathlib import Path

import coloredlogs

logger = logging.getLogger(__name__)


class ThreadColourFormatter(logging.Formatter):
    """Give every thread name its own ANSI colour.

    Parallel transfers log from one thread each, see
    :py:func:`token_bridge.parallel.run_transfers_parallel`. Wraps the
    ``coloredlogs`` formatter and only recolours the thread name.
    """

    _PALETTE = [
        "\033[1;36m",
        "\033[1;33m",
        "\033[1;35m",
        "\033[1;32m",
        "\033[1;34m",
        "\033[1;91m",
    ]
    _RESET = "\033[0m"

    def __init__(self, inner: logging.Formatter):
        super().__init__()
        self._inner = inner
        self._colours: dict[str, str] = {}

    def format(self, record: logging.LogRecord) -> str:
        name = record.threadName
        if name not in self._colours:
            self._colours[name] = self._PALETTE[len(self._colours) % len(self._PALETTE)]
        return self._inner.format(record).replace(name, f"{self._colours[name]}{name}{self._RESET}", 1)


def setup_console_logging(
    default_log_level="info",
    log_file: Path | None = None,
    coloured_threads=False,
) -> logging.Logger:
    """Set up coloured log output for scripts.

    - ``LOG_LEVEL`` environment variable overrides ``default_log_level``
    - Tunes down noisy HTTP and web3 loggers

    :param log_file:
        Also write everything at INFO or above to this file.

    :param coloured_threads:
        Colour thread names, useful with parallel transfers.

    :return:
        Root logger
    """
    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert isinstance(numeric_level, int), f"No log level: {level}"

    fmt = "%(asctime)s %(name)-30s [%(threadName)s] %(message)s"
    date_fmt = "%Y-%m-%d %H:%M:%S"
    coloredlogs.install(level=numeric_level, fmt=fmt, datefmt=date_fmt)

    root = logging.getLogger()
    if coloured_threads:
        for handler in root.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
                handler.setFormatter(ThreadColourFormatter(handler.formatter))

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(min(logging.INFO, numeric_level))
        file_handler.setFormatter(logging.Formatter(fmt, date_fmt))
        root.addHandler(file_handler)
        root.setLevel(min(logging.INFO, numeric_level))

    # Mute noise
    logging.getLogger("web3.providers.HTTPProvider").setLevel(logging.WARNING)
    logging.getLogger("web3.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("web3.manager.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    return root


def parse_amount(text: str, decimals: int) -> int:
    """Convert a human amount like ``"1.5"`` to token base units.

    :raises ValueError:
        Not a number, negative, or more precise than the token.
    """
    try:
        value = Decimal(text.strip())
    except InvalidOperation as e:
        raise ValueError(f"Not an amount: {text!r}") from e

    if not value.is_finite() or value < 0:
        raise ValueError(f"Amount must be a non-negative number: {text!r}")

    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {text} has more than {decimals} decimals")
    return int(scaled)


def format_amount(amount: int, decimals: int) -> str:
    """Convert base units to a human amount, trailing zeroes removed."""
    value = Decimal(amount).scaleb(-decimals)
    text = f"{value:f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text
