import pytest
from prometheus_client import CollectorRegistry

from rtmp_exporter.metadata import MetadataDictionary, MetadataError
from rtmp_exporter.metrics.registry import build_registry
from rtmp_exporter.services.collector import StatsCollector

CAMERA_1 = ("live", "camera-1", "news", "eu-west")


@pytest.fixture
def global_dictionary():
    dictionary = MetadataDictionary(["team", "region"], {"cluster": "eu-1", "env": "prod"})
    dictionary.add_values("camera-1", {"team": "news", "region": "eu-west"})
    return dictionary


def test_root_gauges_start_at_zero_with_global_labels(global_dictionary):
    body = build_registry(global_dictionary, CollectorRegistry()).render().decode()
    assert 'nginx_rtmp_incoming_bytes_total{cluster="eu-1",env="prod"} 0.0' in body
    assert 'nginx_rtmp_exporter_metadata_fields{field="team",cluster="eu-1",env="prod"} 1.0' in body
    assert (
        'nginx_rtmp_exporter_metadata_values{stream="camera-1",field="region",value="eu-west",'
        'cluster="eu-1",env="prod"} 1.0'
    ) in body


async def test_global_labels_on_every_written_series(global_dictionary, make_fetcher, snapshot):
    registry = build_registry(global_dictionary, CollectorRegistry())
    await StatsCollector(make_fetcher(snapshot), global_dictionary, registry).collect_once()
    body = registry.render().decode()

    assert 'nginx_rtmp_application_count{cluster="eu-1",env="prod"} 3.0' in body
    assert 'nginx_rtmp_active_streams{application="live",cluster="eu-1",env="prod"} 1.0' in body
    assert (
        'nginx_rtmp_stream_total_clients{application="live",stream="camera-1",team="news",'
        'region="eu-west",cluster="eu-1",env="prod"} 2.0'
    ) in body
    # readers address series by the metric's own labels only
    assert registry["nginx_rtmp_stream_total_clients"].value(CAMERA_1) == 2
    assert registry["nginx_rtmp_application_count"].value() == 3


async def test_reset_keeps_global_labels_on_root_gauges(global_dictionary, make_fetcher, fetch_error):
    registry = build_registry(global_dictionary, CollectorRegistry())
    await StatsCollector(make_fetcher(fetch_error), global_dictionary, registry).collect_once()

    assert registry["nginx_rtmp_outgoing_bandwidth"].series() == {(): 0}
    assert registry["nginx_rtmp_stream_total_clients"].series() == {}


def test_without_global_labels_root_gauges_are_unlabelled(dictionary):
    body = build_registry(dictionary, CollectorRegistry()).render().decode()
    assert "nginx_rtmp_incoming_bytes_total 0.0" in body


def test_global_label_clashing_with_metric_label():
    dictionary = MetadataDictionary(["team"], {"version": "x"})
    with pytest.raises(MetadataError, match="version"):
        build_registry(dictionary, CollectorRegistry())


@pytest.mark.parametrize("global_fields", [{"team": "a"}, {"stream": "a"}, {"bad-name": "a"}])
def test_invalid_global_fields(global_fields):
    with pytest.raises(MetadataError):
        MetadataDictionary(["team"], global_fields)


def test_global_fields_loaded_from_file(tmp_path):
    path = tmp_path / "meta.toml"
    path.write_text('fields = ["team"]\n\n[global_fields]\ncluster = "eu-1"\n')
    dictionary = MetadataDictionary.from_toml(path)
    assert dictionary.global_fields == {"cluster": "eu-1"}
    assert dictionary.label_names() == ("application", "stream", "team")
