"""Logging for cumulus.

Every cumulus module logs through loguru with ``provider`` and ``component``
bound (``client``, ``jobs``, ``zones``, ``catalog``, ``orchestrator``,
``materializer`` and so on). The sinks added here render both, so a single
launch can be followed from the network candidates through the job waiter.
Logging stays disabled until the application asks for it.

Example:
    from cumulus.logging import LogConfig, setup_logging, teardown_logging

    handler_ids = setup_logging(LogConfig(level="DEBUG", components=frozenset({"orchestrator"})))
    try:
        vms.launch(...)
    finally:
        teardown_logging(handler_ids)
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final, Literal, TextIO

from loguru import logger

logger.disable("cumulus")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
type LogSink = str | TextIO | Callable[[Any], None]

UNBOUND: Final = "-"

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[provider]}</magenta>/<cyan>{extra[component]}</cyan> - "
    "<level>{message}</level>\n{exception}"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[provider]}/{extra[component]} | {name}:{line} - {message}\n{exception}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Which cumulus records go where.

    Attributes:
        level: Minimum level for the console sink.
        file: Log file path; the file sink always captures DEBUG.
        console: Whether to write to stderr.
        components: Only records bound to one of these components pass,
            e.g. ``{"orchestrator", "materializer", "jobs"}`` to follow
            launches. None passes every component.
        rotation: File rotation policy (e.g. "50 MB", "1 day").
        retention: Number of rotated files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    components: frozenset[str] | None = None
    rotation: str = "50 MB"
    retention: int = 10


def _formatter(template: str) -> Callable[[Any], str]:
    def render(record: Any) -> str:
        extra = record["extra"]
        extra.setdefault("provider", UNBOUND)
        extra.setdefault("component", UNBOUND)
        return template
    return render


def _filter(components: frozenset[str] | None) -> Callable[[Any], bool]:
    def accept(record: Any) -> bool:
        name = record["name"] or ""
        if name != "cumulus" and not name.startswith("cumulus."):
            return False
        return components is None or record["extra"].get("component") in components
    return accept


def add_sink(sink: LogSink, config: LogConfig, *, level: LogLevel | None = None, **options: Any) -> int:
    """Attach one sink rendering cumulus records with their component."""
    template = FILE_FORMAT if isinstance(sink, str) else CONSOLE_FORMAT
    return logger.add(
        sink,
        level=level or config.level,
        format=_formatter(template),
        filter=_filter(config.components),
        **options,
    )


def setup_logging(config: LogConfig) -> list[int]:
    """Enable cumulus logging and return handler IDs for cleanup."""
    logger.enable("cumulus")
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(add_sink(sys.stderr, config, colorize=True))

    if config.file:
        handler_ids.append(
            add_sink(
                config.file,
                config,
                level="DEBUG",
                rotation=config.rotation,
                retention=config.retention,
                compression="zip",
                diagnose=False,  # keys and signatures stay out of tracebacks
                enqueue=True,
            )
        )

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    """Remove handlers and disable logging."""
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("cumulus")
