"""
Entry point for the otelbridge tracez CLI.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
import signal
import sys
from contextlib import suppress
from typing import List, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace import Status, StatusCode

from .processor import DEFAULT_ERROR_SAMPLES, DEFAULT_LATENCY_SAMPLES, TracezSpanProcessor
from .tracez import DEFAULT_PATH, TracezServer, TracezServerConfig

logger = logging.getLogger(__name__)

_DEMO_OPERATIONS = ("GET /users", "POST /orders", "db.query")


async def _demo_spans(tracer: trace.Tracer, interval: float, stop_event: asyncio.Event) -> None:
    """Emit a few nested spans every ``interval`` seconds until stopped."""
    while not stop_event.is_set():
        name = random.choice(_DEMO_OPERATIONS)
        with tracer.start_as_current_span(name) as span:
            span.set_attribute("demo.iteration", random.randint(0, 1000))
            with tracer.start_as_current_span("db.query"):
                await asyncio.sleep(random.uniform(0.0, 0.05))
            if random.random() < 0.2:
                span.set_status(Status(StatusCode.ERROR, "demo failure"))
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=interval)


async def _run_async(args: argparse.Namespace) -> None:
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    processor = TracezSpanProcessor(
        latency_samples=args.latency_samples,
        error_samples=args.error_samples,
    )
    provider = TracerProvider()
    provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)

    server = TracezServer(processor, TracezServerConfig(endpoint=args.http_endpoint, path=args.path))

    def _handle_signal() -> None:
        logger.info("Received shutdown signal, stopping...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, _handle_signal)

    await server.start()

    demo_task: Optional[asyncio.Task] = None
    if args.demo_interval > 0:
        tracer = trace.get_tracer(__name__)
        demo_task = asyncio.create_task(_demo_spans(tracer, args.demo_interval, stop_event))

    await stop_event.wait()

    if demo_task is not None:
        with suppress(asyncio.CancelledError):
            await demo_task

    await server.stop()
    provider.shutdown()


def _parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve an in-process tracez page for OpenTelemetry spans.")
    parser.add_argument(
        "--http-endpoint",
        default="127.0.0.1:8080",
        help="Address for the tracez HTTP page (default: %(default)s)",
    )
    parser.add_argument(
        "--path",
        default=DEFAULT_PATH,
        help="URL path of the tracez page (default: %(default)s)",
    )
    parser.add_argument(
        "--latency-samples",
        type=int,
        default=DEFAULT_LATENCY_SAMPLES,
        help="Samples kept per latency bucket (default: %(default)s)",
    )
    parser.add_argument(
        "--error-samples",
        type=int,
        default=DEFAULT_ERROR_SAMPLES,
        help="Samples kept per error status (default: %(default)s)",
    )
    parser.add_argument(
        "--demo-interval",
        type=float,
        default=0.0,
        help="Seconds between generated demo spans; 0 disables them (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (default: %(default)s)",
    )
    return parser.parse_args(argv)


def run(argv: Optional[List[str]] = None) -> None:
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(list(argv))
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))
    try:
        asyncio.run(_run_async(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


if __name__ == "__main__":
    run()
