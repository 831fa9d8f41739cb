"""
A structured-logging sink that bridges leveled key/value logging to OpenTelemetry logs.

Records are built as follows:

- The message becomes the body as a string value.
- The verbosity level is mapped to a severity by ``LogSinkConfig.level_severity``;
  ``error`` always uses ``SeverityNumber.ERROR``.
- The error passed to ``error`` is recorded first, as ``exception.message``.
- Values accumulated through ``with_values`` follow, then the call's own values.
- A ``Context`` given as a value is not recorded as an attribute; the last one
  becomes the context the record is emitted with.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, List, Optional, Tuple

from opentelemetry import context as otel_context
from opentelemetry._logs import Logger, LoggerProvider, SeverityNumber, get_logger_provider
from opentelemetry.context import Context

from .convert import convert_kvs
from .models import KeyValue, LogRecord, string_kv, string_value

EXCEPTION_MESSAGE_KEY = "exception.message"


def default_level_severity(level: int) -> SeverityNumber:
    """Map verbosity 0 to INFO, 1 to DEBUG and anything higher to TRACE."""
    if level <= 0:
        return SeverityNumber.INFO
    if level == 1:
        return SeverityNumber.DEBUG
    return SeverityNumber.TRACE


@dataclass(frozen=True)
class LogSinkConfig:
    logger_provider: Optional[LoggerProvider] = None
    version: Optional[str] = None
    schema_url: Optional[str] = None
    level_severity: Callable[[int], SeverityNumber] = default_level_severity

    def resolved(self) -> "LogSinkConfig":
        if self.logger_provider is not None:
            return self
        return replace(self, logger_provider=get_logger_provider())

    def get_logger(self, name: str) -> Logger:
        return self.logger_provider.get_logger(name, version=self.version, schema_url=self.schema_url)


class LogSink:
    """Immutable log sink. ``with_name`` and ``with_values`` return new sinks."""

    __slots__ = ("_name", "_config", "_logger", "_attributes", "_context")

    def __init__(
        self,
        name: str,
        config: Optional[LogSinkConfig] = None,
        *,
        context: Optional[Context] = None,
    ) -> None:
        self._config = (config or LogSinkConfig()).resolved()
        self._name = name
        self._logger = self._config.get_logger(name)
        self._attributes: Tuple[KeyValue, ...] = ()
        self._context = context

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> LogSinkConfig:
        return self._config

    @property
    def attributes(self) -> List[KeyValue]:
        return list(self._attributes)

    @property
    def context(self) -> Optional[Context]:
        return self._context

    def enabled(self, level: int) -> bool:
        """Report whether a record at ``level`` would be recorded.

        The answer comes from the underlying logger when it offers an
        ``enabled(context=..., severity_number=...)`` check and is advisory only.
        """
        check = getattr(self._logger, "enabled", None)
        if not callable(check):
            return True
        return bool(
            check(
                context=self._emit_context(None),
                severity_number=self._config.level_severity(level),
            )
        )

    def info(self, level: int, message: str, *keys_and_values: Any) -> None:
        self.log(self._config.level_severity(level), message, *keys_and_values)

    def error(self, err: Optional[BaseException], message: str, *keys_and_values: Any) -> None:
        self.log(SeverityNumber.ERROR, message, *keys_and_values, error=err)

    def log(
        self,
        severity: SeverityNumber,
        message: str,
        *keys_and_values: Any,
        error: Optional[BaseException] = None,
    ) -> None:
        record = self.build_record(severity, message, keys_and_values, error=error)
        self._logger.emit(record.to_otel())

    def build_record(
        self,
        severity: SeverityNumber,
        message: str,
        keys_and_values: Any = (),
        *,
        error: Optional[BaseException] = None,
    ) -> LogRecord:
        attributes: List[KeyValue] = []
        if error is not None:
            attributes.append(string_kv(EXCEPTION_MESSAGE_KEY, str(error)))
        attributes.extend(self._attributes)
        ctx, kvs = convert_kvs(None, keys_and_values)
        attributes.extend(kvs)
        return LogRecord(
            body=string_value(message),
            severity=severity,
            attributes=attributes,
            context=self._emit_context(ctx),
        )

    def with_name(self, name: str) -> "LogSink":
        child = self._copy()
        child._name = f"{self._name}/{name}"
        child._logger = self._config.get_logger(child._name)
        return child

    def with_values(self, *keys_and_values: Any) -> "LogSink":
        ctx, kvs = convert_kvs(self._context, keys_and_values)
        child = self._copy()
        child._attributes = self._attributes + tuple(kvs)
        child._context = ctx
        return child

    def _copy(self) -> "LogSink":
        child = LogSink.__new__(LogSink)
        child._name = self._name
        child._config = self._config
        child._logger = self._logger
        child._attributes = self._attributes
        child._context = self._context
        return child

    def _emit_context(self, ctx: Optional[Context]) -> Context:
        if ctx is not None:
            return ctx
        if self._context is not None:
            return self._context
        return otel_context.get_current()

    def __repr__(self) -> str:
        return f"LogSink(name={self._name!r}, attributes={len(self._attributes)})"
