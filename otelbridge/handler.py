"""
A standard-library ``logging.Handler`` that forwards records through a ``LogSink``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from opentelemetry._logs import SeverityNumber

from .logsink import LogSink

EXCEPTION_TYPE_KEY = "exception.type"

# Attributes every logging.LogRecord carries; anything else came from ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


def severity_from_levelno(levelno: int) -> SeverityNumber:
    if levelno >= logging.CRITICAL:
        return SeverityNumber.FATAL
    if levelno >= logging.ERROR:
        return SeverityNumber.ERROR
    if levelno >= logging.WARNING:
        return SeverityNumber.WARN
    if levelno >= logging.INFO:
        return SeverityNumber.INFO
    if levelno >= logging.DEBUG:
        return SeverityNumber.DEBUG
    return SeverityNumber.TRACE


class OTelLogHandler(logging.Handler):
    """Bridge ``logging`` records into OpenTelemetry through a :class:`LogSink`.

    Fields passed with ``extra=`` become attributes in the order given. When
    ``scope_by_logger`` is set, each ``logging`` logger name gets its own
    child sink, named ``<sink name>/<logger name>``.
    """

    def __init__(
        self,
        sink: LogSink,
        level: int = logging.NOTSET,
        *,
        scope_by_logger: bool = False,
    ) -> None:
        super().__init__(level)
        self._sink = sink
        self._scope_by_logger = scope_by_logger
        self._scoped: Dict[str, LogSink] = {}

    @property
    def sink(self) -> LogSink:
        return self._sink

    def emit(self, record: logging.LogRecord) -> None:
        try:
            sink = self._sink_for(record.name)
            err: Optional[BaseException] = None
            kvs: List[Any] = []
            if record.exc_info and record.exc_info[1] is not None:
                err = record.exc_info[1]
                kvs.extend((EXCEPTION_TYPE_KEY, type(err).__name__))
            kvs.extend(_extra_items(record))
            sink.log(severity_from_levelno(record.levelno), record.getMessage(), *kvs, error=err)
        except RecursionError:
            raise
        except Exception:
            self.handleError(record)

    def _sink_for(self, logger_name: str) -> LogSink:
        if not self._scope_by_logger:
            return self._sink
        sink = self._scoped.get(logger_name)
        if sink is None:
            sink = self._sink.with_name(logger_name)
            self._scoped[logger_name] = sink
        return sink


def _extra_items(record: logging.LogRecord) -> List[Any]:
    items: List[Any] = []
    for key, value in vars(record).items():
        if key in _RESERVED_ATTRS or key.startswith("_"):
            continue
        items.extend((key, value))
    return items
