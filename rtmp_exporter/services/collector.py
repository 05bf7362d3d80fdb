from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from ..metadata import MetadataDictionary, build_labels
from ..metrics.registry import MetricRegistry
from ..models import Application, Snapshot, Stream
from .fetcher import FetchError
from .relay import is_local_relay

logger = logging.getLogger(__name__)


class SnapshotSource(Protocol):
    async def fetch(self) -> Snapshot: ...


def count_active_streams(application: Application) -> int:
    """Streams with publisher metadata and at least one non-relay connection."""
    return sum(
        1
        for stream in application.streams
        if stream.meta is not None
        and any(not is_local_relay(client) for client in stream.clients)
    )


class StatsCollector:
    """Translates statistics snapshots into the exported metrics.

    One cycle runs per scrape. The whole cycle holds a lock so concurrent
    scrapes never observe a partially reset registry.
    """

    def __init__(
        self,
        fetcher: SnapshotSource,
        dictionary: MetadataDictionary,
        registry: MetricRegistry,
    ) -> None:
        self.fetcher = fetcher
        self.dictionary = dictionary
        self.registry = registry
        self.last_success: Optional[datetime] = None
        self._lock = asyncio.Lock()

    async def collect_once(self) -> bool:
        """Run one reset, fetch, populate cycle.

        Returns False when the snapshot could not be fetched; the dynamic
        series are then left empty.
        """
        async with self._lock:
            return await self._collect_once()

    async def _collect_once(self) -> bool:
        self.registry.reset_dynamic()
        try:
            snapshot = await self.fetcher.fetch()
        except FetchError as exc:
            logger.warning("Failed to collect RTMP statistics: %s", exc)
            return False

        self._write_snapshot(snapshot)
        self.last_success = datetime.now(timezone.utc)
        return True

    def _write_snapshot(self, snapshot: Snapshot) -> None:
        registry = self.registry
        registry["nginx_build_info"].set(
            1, (snapshot.nginx_version, snapshot.compiler, snapshot.nginx_rtmp_version)
        )
        registry["nginx_rtmp_application_count"].set(len(snapshot.applications))
        registry["nginx_rtmp_incoming_bytes_total"].set(snapshot.bytes_in)
        registry["nginx_rtmp_outgoing_bytes_total"].set(snapshot.bytes_out)
        registry["nginx_rtmp_incoming_bandwidth"].set(snapshot.bw_in)
        registry["nginx_rtmp_outgoing_bandwidth"].set(snapshot.bw_out)

        for application in snapshot.applications:
            registry["nginx_rtmp_active_streams"].set(
                count_active_streams(application), (application.name,)
            )
            for stream in application.streams:
                self._write_stream(application.name, stream)

        logger.debug(
            "Collected %d applications, %d streams",
            len(snapshot.applications),
            sum(len(application.streams) for application in snapshot.applications),
        )

    def _write_stream(self, application: str, stream: Stream) -> None:
        registry = self.registry
        labels = build_labels(self.dictionary, application, stream.name)

        registry["nginx_rtmp_stream_incoming_bytes_total"].set(stream.bytes_in, labels)
        registry["nginx_rtmp_stream_outgoing_bytes_total"].set(stream.bytes_out, labels)
        registry["nginx_rtmp_stream_incoming_bandwidth"].set(stream.bw_in, labels)
        registry["nginx_rtmp_stream_outgoing_bandwidth"].set(stream.bw_out, labels)
        registry["nginx_rtmp_stream_bandwidth_video"].set(stream.bw_video, labels)
        registry["nginx_rtmp_stream_bandwidth_audio"].set(stream.bw_audio, labels)

        # absent rather than zero when there is no audio or no publisher
        if stream.bw_audio != 0:
            publisher = stream.publisher()
            if publisher is not None:
                registry["nginx_rtmp_stream_publisher_avsync"].set(publisher.avsync, labels)

        if not stream.clients:
            logger.warning(
                "Stream %s/%s reported no clients; omitting total client count",
                application,
                stream.name,
            )
            return
        # every stream carries exactly one publisher connection
        registry["nginx_rtmp_stream_total_clients"].set(len(stream.clients) - 1, labels)
