"""Monitoring and observability setup.

Instruments are created from the global meter at import time. Until
``init_metrics`` installs a real MeterProvider they are no-op proxies, so
the business code can record measurements unconditionally (tests and
OTEL_ENABLED=false deployments simply export nothing).
"""
import logging

import pyroscope
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from storefront.config import (
    API_VERSION,
    ENVIRONMENT,
    OTEL_EXPORTER_OTLP_ENDPOINT,
    PYROSCOPE_SERVER,
    SERVICE_NAME,
)

logger = logging.getLogger(__name__)


def _resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": API_VERSION,
        "deployment.environment": ENVIRONMENT,
    })


def init_tracing(endpoint: str = OTEL_EXPORTER_OTLP_ENDPOINT) -> trace.Tracer:
    """
    Install a TracerProvider exporting spans over OTLP/gRPC.

    Args:
        endpoint: Collector address

    Returns:
        Tracer for this module
    """
    provider = TracerProvider(resource=_resource())
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
    )
    trace.set_tracer_provider(provider)

    logger.info("Tracing initialized", extra={"endpoint": endpoint})
    return trace.get_tracer(__name__)


def init_metrics(endpoint: str = OTEL_EXPORTER_OTLP_ENDPOINT, interval_ms: int = 5000) -> metrics.Meter:
    """
    Install a MeterProvider pushing to the collector every ``interval_ms``.

    The module-level instruments below start exporting once this has run.
    """
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=endpoint, insecure=True),
        export_interval_millis=interval_ms
    )
    metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=[reader]))

    logger.info("Metrics initialized", extra={"endpoint": endpoint, "interval_ms": interval_ms})
    return metrics.get_meter(__name__)


def init_profiling(server: str = PYROSCOPE_SERVER) -> None:
    """Start continuous profiling; the service keeps running if the agent fails."""
    try:
        pyroscope.configure(
            application_name=SERVICE_NAME,
            server_address=server,
            tags={"env": ENVIRONMENT, "version": API_VERSION}
        )
    except Exception as e:
        logger.warning("Failed to initialize profiling", extra={"server": server, "error": str(e)})
        return
    logger.info("Profiling initialized", extra={"server": server})


meter = metrics.get_meter(__name__)

# Cart metrics
cart_additions_counter = meter.create_counter(
    "storefront.cart.additions",
    description="Total number of cart line additions",
    unit="1"
)

# Order metrics
orders_placed_counter = meter.create_counter(
    "storefront.orders.placed",
    description="Total number of orders placed",
    unit="1"
)

order_amount_histogram = meter.create_histogram(
    "storefront.orders.amount",
    description="Order total amount",
    unit="INR"
)

order_status_changes_counter = meter.create_counter(
    "storefront.orders.status_changes",
    description="Order status and payment status transitions",
    unit="1"
)

orders_cancelled_counter = meter.create_counter(
    "storefront.orders.cancelled",
    description="Total number of orders cancelled by customers",
    unit="1"
)

# Inventory metrics
stock_reservation_failures_counter = meter.create_counter(
    "storefront.inventory.reservation_failures",
    description="Stock decrements rejected for insufficient or missing stock",
    unit="1"
)

stock_restocks_counter = meter.create_counter(
    "storefront.inventory.restocks",
    description="Units returned to stock by cancellations",
    unit="1"
)

sku_collisions_counter = meter.create_counter(
    "storefront.catalogue.sku_collisions",
    description="SKU candidates rejected because they were already taken",
    unit="1"
)
