"""Shared pytest fixtures for exporter tests."""

from pathlib import Path
from typing import List, Union

import pytest
from prometheus_client import CollectorRegistry

from rtmp_exporter.metadata import MetadataDictionary
from rtmp_exporter.metrics.registry import MetricRegistry, build_registry
from rtmp_exporter.models import Snapshot
from rtmp_exporter.parser import parse_stats
from rtmp_exporter.services.fetcher import FetchError


class FakeFetcher:
    """Returns queued snapshots, or raises queued fetch errors, in order."""

    def __init__(self, *results: Union[Snapshot, Exception]) -> None:
        self.results: List[Union[Snapshot, Exception]] = list(results)
        self.calls = 0

    async def fetch(self) -> Snapshot:
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def stat_xml(fixtures_dir: Path) -> str:
    return (fixtures_dir / "stat.xml").read_text(encoding="utf-8")


@pytest.fixture
def snapshot(stat_xml: str) -> Snapshot:
    return parse_stats(stat_xml)


@pytest.fixture
def dictionary() -> MetadataDictionary:
    dictionary = MetadataDictionary(["team", "region"])
    dictionary.add_values("camera-1", {"team": "news", "region": "eu-west"})
    dictionary.add_value("camera-2", "team", "sports")
    return dictionary


@pytest.fixture
def registry(dictionary: MetadataDictionary) -> MetricRegistry:
    return build_registry(dictionary, CollectorRegistry())


@pytest.fixture
def fetch_error() -> FetchError:
    return FetchError("connection refused")


@pytest.fixture
def make_fetcher():
    return FakeFetcher
