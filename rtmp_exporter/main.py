from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import RedirectResponse
from prometheus_client import CollectorRegistry
from pydantic import ValidationError

from .config import Settings
from .logging_config import setup_logging
from .metadata import MetadataDictionary, MetadataError
from .metrics.registry import MetricRegistry, build_registry, exporter_version
from .services.collector import SnapshotSource, StatsCollector
from .services.fetcher import StatsFetcher

logger = logging.getLogger(__name__)


def load_dictionary(settings: Settings) -> MetadataDictionary:
    if settings.metadata is None:
        return MetadataDictionary()
    dictionary = MetadataDictionary.from_file(settings.metadata, settings.metadata_format)
    logger.info(
        "Loaded metadata for %d streams (%d fields) from %s",
        len(dictionary),
        len(dictionary.fields),
        settings.metadata,
    )
    return dictionary


def create_app(
    settings: Settings,
    dictionary: Optional[MetadataDictionary] = None,
    fetcher: Optional[SnapshotSource] = None,
    collector_registry: Optional[CollectorRegistry] = None,
) -> FastAPI:
    """Build the exporter application.

    The metadata dictionary must be complete before the registry is built,
    since its fields become the per-stream label names.
    """
    if dictionary is None:
        dictionary = load_dictionary(settings)
    registry = build_registry(dictionary, collector_registry)
    if fetcher is None:
        fetcher = StatsFetcher(str(settings.scrape_url), settings.fetch_timeout_seconds)
    collector = StatsCollector(fetcher=fetcher, dictionary=dictionary, registry=registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            close = getattr(fetcher, "aclose", None)
            if close is not None:
                await close()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.registry = registry
    app.state.collector = collector

    @app.get("/", include_in_schema=False)
    async def root_redirect() -> RedirectResponse:
        return RedirectResponse("/metrics")

    @app.get("/metrics")
    async def read_metrics(
        collector: StatsCollector = Depends(get_collector),
        registry: MetricRegistry = Depends(get_registry),
    ) -> Response:
        await collector.collect_once()
        return Response(content=registry.render(), media_type=registry.content_type)

    @app.get("/healthz")
    async def healthz(collector: StatsCollector = Depends(get_collector)) -> Dict[str, Any]:
        last_success = collector.last_success
        return {
            "status": "ok",
            "last_success": last_success.isoformat() if last_success else None,
        }

    return app


def get_registry(request: Request) -> MetricRegistry:
    return request.app.state.registry


def get_collector(request: Request) -> StatsCollector:
    return request.app.state.collector


def run() -> None:
    try:
        settings = Settings(_cli_parse_args=True)
    except ValidationError as exc:
        setup_logging()
        logger.error("Invalid configuration:\n%s", exc)
        sys.exit(1)

    setup_logging(settings.log_level)
    logger.info("%s v%s", settings.app_name, exporter_version())

    try:
        dictionary = load_dictionary(settings)
        app = create_app(settings, dictionary=dictionary)
    except MetadataError as exc:
        logger.error("Failed to load metadata: %s", exc)
        sys.exit(1)

    logger.info("Listening for requests on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="warning")


if __name__ == "__main__":
    run()
