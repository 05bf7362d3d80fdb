import json

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from rtmp_exporter.config import Settings
from rtmp_exporter.main import create_app, load_dictionary
from rtmp_exporter.metadata import MetadataDictionary, MetadataError, MetadataFormat


@pytest.fixture
def settings():
    return Settings(scrape_url="http://nginx.local/stat")


def make_client(settings, dictionary, fetcher):
    app = create_app(
        settings,
        dictionary=dictionary,
        fetcher=fetcher,
        collector_registry=CollectorRegistry(),
    )
    return TestClient(app)


def test_metrics_endpoint(settings, dictionary, make_fetcher, snapshot):
    with make_client(settings, dictionary, make_fetcher(snapshot)) as client:
        response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    body = response.text
    assert (
        'nginx_rtmp_stream_total_clients{application="live",stream="camera-1",'
        'team="news",region="eu-west"} 2.0'
    ) in body
    assert 'nginx_rtmp_active_streams{application="live"} 1.0' in body
    assert 'nginx_rtmp_exporter_metadata_values{stream="camera-2",field="team",value="sports"} 1.0' in body


def test_each_scrape_runs_one_cycle(settings, dictionary, make_fetcher, snapshot):
    fetcher = make_fetcher(snapshot)
    with make_client(settings, dictionary, fetcher) as client:
        client.get("/metrics")
        client.get("/metrics")
    assert fetcher.calls == 2


def test_failed_fetch_still_answers(settings, dictionary, make_fetcher, snapshot, fetch_error):
    with make_client(settings, dictionary, make_fetcher(snapshot, fetch_error)) as client:
        assert "nginx_rtmp_stream_incoming_bytes_total{" in client.get("/metrics").text
        response = client.get("/metrics")

    assert response.status_code == 200
    assert "nginx_rtmp_stream_incoming_bytes_total{" not in response.text
    assert "nginx_build_info{" not in response.text
    assert "nginx_rtmp_exporter_build_info{" in response.text


def test_healthz_reports_last_success(settings, dictionary, make_fetcher, snapshot):
    with make_client(settings, dictionary, make_fetcher(snapshot)) as client:
        assert client.get("/healthz").json() == {"status": "ok", "last_success": None}
        client.get("/metrics")
        assert client.get("/healthz").json()["last_success"] is not None


def test_root_redirects_to_metrics(settings, dictionary, make_fetcher, snapshot):
    with make_client(settings, dictionary, make_fetcher(snapshot)) as client:
        response = client.get("/", follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "/metrics"


def test_load_dictionary(tmp_path):
    path = tmp_path / "meta.json"
    path.write_text(json.dumps({"fields": ["team"], "metadata": {"cam": {"team": "news"}}}))

    dictionary = load_dictionary(
        Settings(scrape_url="http://nginx.local/stat", metadata=path, metadata_format="JSON")
    )
    assert dictionary.values_for("cam") == ("news",)
    assert load_dictionary(Settings(scrape_url="http://nginx.local/stat")).fields == ()


def test_load_dictionary_rejects_unknown_fields(tmp_path):
    path = tmp_path / "meta.toml"
    path.write_text('fields = ["team"]\n[metadata.cam]\nowner = "x"\n')
    settings = Settings(
        scrape_url="http://nginx.local/stat", metadata=path, metadata_format=MetadataFormat.TOML
    )
    with pytest.raises(MetadataError):
        load_dictionary(settings)


def test_empty_dictionary_uses_two_stream_labels(settings, make_fetcher, snapshot):
    with make_client(settings, MetadataDictionary(), make_fetcher(snapshot)) as client:
        body = client.get("/metrics").text
    assert 'nginx_rtmp_stream_total_clients{application="relay",stream="camera-1"} 0.0' in body
