from typing import List, Optional

import pytest
from opentelemetry._logs import Logger, LoggerProvider, LogRecord, SeverityNumber
from opentelemetry.context import Context
from opentelemetry.sdk._logs import LoggerProvider as SDKLoggerProvider
from opentelemetry.sdk._logs.export import InMemoryLogRecordExporter, SimpleLogRecordProcessor
from opentelemetry.sdk.trace import TracerProvider

from otelbridge.logsink import LogSinkConfig
from otelbridge.processor import TracezSpanProcessor


class RecordingLogger(Logger):
    def __init__(self, name, version=None, schema_url=None, min_severity=None):
        super().__init__(name, version=version, schema_url=schema_url)
        self.version = version
        self.schema_url = schema_url
        self.records: List[LogRecord] = []
        self.min_severity = min_severity

    def emit(self, record: LogRecord) -> None:
        self.records.append(record)

    def enabled(
        self,
        *,
        context: Optional[Context] = None,
        severity_number: Optional[SeverityNumber] = None,
        event_name: Optional[str] = None,
    ) -> bool:
        if self.min_severity is None or severity_number is None:
            return True
        return severity_number.value >= self.min_severity.value


class RecordingLoggerProvider(LoggerProvider):
    """Hands out one recording logger per name and keeps every emitted record."""

    def __init__(self, min_severity=None):
        self.loggers = {}
        self.min_severity = min_severity

    def get_logger(self, name, version=None, schema_url=None, attributes=None):
        logger = self.loggers.get(name)
        if logger is None:
            logger = RecordingLogger(name, version, schema_url, self.min_severity)
            self.loggers[name] = logger
        return logger

    @property
    def records(self) -> List[LogRecord]:
        return [record for logger in self.loggers.values() for record in logger.records]


@pytest.fixture
def recording_provider_factory():
    return RecordingLoggerProvider


@pytest.fixture
def logger_provider():
    return RecordingLoggerProvider()


@pytest.fixture
def sink_config(logger_provider):
    return LogSinkConfig(logger_provider=logger_provider)


@pytest.fixture
def tracez_processor():
    return TracezSpanProcessor()


@pytest.fixture
def tracer_provider(tracez_processor):
    provider = TracerProvider()
    provider.add_span_processor(tracez_processor)
    yield provider
    provider.shutdown()


@pytest.fixture
def tracer(tracer_provider):
    return tracer_provider.get_tracer("otelbridge.tests")


@pytest.fixture
def log_exporter():
    return InMemoryLogRecordExporter()


@pytest.fixture
def sdk_logger_provider(log_exporter):
    provider = SDKLoggerProvider(shutdown_on_exit=False)
    provider.add_log_record_processor(SimpleLogRecordProcessor(log_exporter))
    yield provider
    provider.shutdown()


@pytest.fixture
def exported_logs(log_exporter):
    """Returns a callable listing the log records exported so far."""

    def _exported():
        return [item.log_record for item in log_exporter.get_finished_logs()]

    return _exported
