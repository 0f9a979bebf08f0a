"""
TraceRelay - Main Application Entry Point

Composition root wiring configuration, tracing, logging and the relay into
a FastAPI application for the backend or edge role.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional

import httpx
import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tracerelay.api.client import BackendChatClient
from tracerelay.api.routes import setup_backend_routes, setup_common_routes, setup_edge_routes
from tracerelay.core.config import TraceRelayConfig, get_config, set_config, validate_config
from tracerelay.core.errors import ConfigurationError
from tracerelay.observability.exporter import OTLPHTTPTransport, SpanTransport, TraceExporter
from tracerelay.observability.instrumentation.http_client import OutboundCallDecorator, TracedHTTPClient
from tracerelay.observability.instrumentation.middleware import ObservabilityMiddleware
from tracerelay.observability.logging.correlation import setup_logging
from tracerelay.observability.logging.engine import StructuredLogger
from tracerelay.observability.logging.sinks import ConsoleSink, LogSink, SeqSink
from tracerelay.observability.tracing.engine import TracingEngine
from tracerelay.observability.tracing.sampling import ParentBasedSampler, TraceIdRatioSampler
from tracerelay.relay.broadcast import BroadcastRelay
from tracerelay.relay.websocket import ChatHub, create_hub_router

logger = structlog.get_logger(__name__)


@dataclass
class Components:
    """Everything one service instance is built from."""
    config: TraceRelayConfig
    logger: StructuredLogger
    tracing: TracingEngine
    exporter: Optional[TraceExporter]
    relay: BroadcastRelay
    hub: ChatHub
    decorator: OutboundCallDecorator
    backend_client: Optional[BackendChatClient] = None

    async def start(self) -> None:
        await self.logger.start()
        if self.exporter:
            await self.exporter.start()

    async def shutdown(self) -> None:
        if self.backend_client:
            await self.backend_client.aclose()
        if self.exporter:
            await self.exporter.shutdown(drain=True)
        await self.logger.shutdown()


def build_sinks(config: TraceRelayConfig) -> List[LogSink]:
    """Console sink plus the remote aggregator when one is configured."""
    sinks: List[LogSink] = [ConsoleSink(mode=config.console_format, min_level=config.logging.level)]
    if config.logging.seq_url:
        sinks.append(SeqSink(
            config.logging.seq_url,
            min_level=config.logging.seq_level,
            batch_size=config.logging.seq_batch_size,
        ))
    return sinks


def build_components(
    config: TraceRelayConfig,
    transport: Optional[SpanTransport] = None,
    sinks: Optional[List[LogSink]] = None,
    backend_http_client: Optional[httpx.AsyncClient] = None,
) -> Components:
    """
    Build and wire every component from a validated configuration.

    Args:
        config: Service configuration
        transport: Span transport overriding the OTLP/HTTP one
        sinks: Log sinks overriding the configured ones
        backend_http_client: HTTP client the edge uses to reach the backend

    Raises:
        ConfigurationError: if the configuration is invalid
    """
    validation = validate_config(config)
    if not validation.ok:
        raise ConfigurationError(validation.errors)

    structured_logger = StructuredLogger(
        sinks if sinks is not None else build_sinks(config),
        failure_report_interval=config.logging.failure_report_interval,
    )

    tracing_config = config.tracing
    exporter = None
    if tracing_config.export_enabled or transport is not None:
        exporter = TraceExporter(
            transport or OTLPHTTPTransport(
                tracing_config.otlp_endpoint,
                service_name=config.service_name,
                timeout=tracing_config.export_timeout,
            ),
            buffer_size=tracing_config.buffer_size,
            batch_size=tracing_config.batch_size,
            flush_interval=tracing_config.flush_interval,
            max_retries=tracing_config.max_retries,
            retry_base_delay=tracing_config.retry_base_delay,
            retry_max_delay=tracing_config.retry_max_delay,
            export_timeout=tracing_config.export_timeout,
        )

    tracing = TracingEngine(
        exporter=exporter,
        sampler=ParentBasedSampler(TraceIdRatioSampler(tracing_config.sample_ratio)),
        service_name=config.service_name,
    )

    relay = BroadcastRelay(
        structured_logger,
        hub_name=config.relay.hub_name,
        send_timeout=config.relay.send_timeout,
        max_send_attempts=config.relay.max_send_attempts,
        max_failures=config.relay.max_failures,
    )
    decorator = OutboundCallDecorator(tracing)

    backend_client = None
    if config.role == "edge":
        backend_client = BackendChatClient(TracedHTTPClient(
            decorator,
            client=backend_http_client,
            base_url=config.backend_url,
        ))

    return Components(
        config=config,
        logger=structured_logger,
        tracing=tracing,
        exporter=exporter,
        relay=relay,
        hub=ChatHub(relay, tracing, structured_logger),
        decorator=decorator,
        backend_client=backend_client,
    )


def create_app(
    config: Optional[TraceRelayConfig] = None,
    components: Optional[Components] = None,
) -> FastAPI:
    """
    Create and configure the TraceRelay FastAPI application.

    Args:
        config: Optional configuration override
        components: Pre-built components (their config wins over ``config``)

    Returns:
        Configured FastAPI application
    """
    if components is not None:
        config = components.config
    elif config is None:
        config = get_config()
    set_config(config)

    # Setup logging
    setup_logging(
        config.logging.level.value,
        json_output=config.console_format == "json",
        service_name=config.service_name,
        overrides=config.logging.logger_overrides,
    )

    if components is None:
        components = build_components(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info("Starting TraceRelay service", service=config.service_name, role=config.role)
        await components.start()
        app.state.components = components

        yield

        logger.info("Shutting down TraceRelay service")
        await components.shutdown()
        logger.info("TraceRelay shutdown complete")

    app = FastAPI(
        title=f"TraceRelay {config.role}",
        description="Chat relay with W3C trace propagation and correlated logging.",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        ObservabilityMiddleware,
        tracing=components.tracing,
        structured_logger=components.logger,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_common_routes(app, components)
    if config.role == "edge":
        setup_edge_routes(app, components)
    else:
        setup_backend_routes(app, components)
    app.include_router(create_hub_router(components.hub))

    return app


def run_server(
    host: str = "0.0.0.0",
    port: int = 8000,
    reload: bool = False,
    role: Optional[str] = None,
) -> None:
    """
    Run the TraceRelay server.

    Args:
        host: Host to bind to
        port: Port to bind to
        reload: Enable auto-reload for development
        role: Override the configured role (backend or edge)
    """
    # Overrides travel through the environment so a reloader subprocess sees them too.
    os.environ["TRACERELAY_HOST"] = host
    os.environ["TRACERELAY_PORT"] = str(port)
    if role:
        os.environ["TRACERELAY_ROLE"] = role
    config = TraceRelayConfig()
    set_config(config)

    uvicorn.run(
        "tracerelay.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=config.logging.level.value.lower(),
    )


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="TraceRelay - traced chat relay")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--role", choices=["backend", "edge"], help="Service role")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()

    run_server(
        host=args.host,
        port=args.port,
        reload=args.reload,
        role=args.role,
    )
