import logging
import platform
from collections import OrderedDict
from importlib import metadata as importlib_metadata
from typing import Dict, Iterable, Mapping, Optional, Sequence

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, generate_latest

from ..metadata import MetadataDictionary, MetadataError
from .base import LabelValues, MetricDefinition, MetricInstrument

logger = logging.getLogger(__name__)

DISTRIBUTION_NAME = "nginx-rtmp-exporter"


class PrometheusGauge(MetricInstrument):
    """Metric instrument backed by a ``prometheus_client`` gauge.

    ``global_labels`` are appended after the definition's own labels on every
    series; callers only ever pass values for the definition's labels.
    """

    def __init__(
        self,
        definition: MetricDefinition,
        registry: CollectorRegistry,
        global_labels: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.definition = definition
        self._global_values = tuple((global_labels or {}).values())
        self._gauge = Gauge(
            definition.name,
            definition.documentation,
            labelnames=definition.label_names + tuple((global_labels or {}).keys()),
            registry=registry,
        )
        if not definition.label_names and self._global_values:
            self._gauge.labels(*self._global_values).set(0)

    def reset(self) -> None:
        if self.definition.label_names:
            self._gauge.clear()
        else:
            self.set(0)

    def set(self, value: float, labels: Sequence[str] = ()) -> None:
        labels = self._check_arity(labels) + self._global_values
        if labels:
            self._gauge.labels(*labels).set(value)
        else:
            self._gauge.set(value)

    def series(self) -> Dict[LabelValues, float]:
        result: Dict[LabelValues, float] = {}
        for family in self._gauge.collect():
            for sample in family.samples:
                key = tuple(sample.labels[name] for name in self.definition.label_names)
                result[key] = sample.value
        return result


class MetricRegistry:
    """Registry that owns the exported metrics and their encoder."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        global_labels: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.collector_registry = registry if registry is not None else CollectorRegistry()
        self.global_labels: Dict[str, str] = dict(global_labels or {})
        self._instruments: "OrderedDict[str, MetricInstrument]" = OrderedDict()

    def register(self, definition: MetricDefinition) -> MetricInstrument:
        if definition.name in self._instruments:
            raise ValueError(f"Metric '{definition.name}' is already registered.")
        clashing = set(definition.label_names) & set(self.global_labels)
        if clashing:
            raise MetadataError(
                f"Global fields {', '.join(sorted(clashing))} collide with labels of '{definition.name}'"
            )
        instrument = PrometheusGauge(definition, self.collector_registry, self.global_labels)
        self._instruments[definition.name] = instrument
        return instrument

    def all(self) -> Iterable[MetricInstrument]:
        return self._instruments.values()

    def get(self, name: str) -> MetricInstrument:
        if name not in self._instruments:
            raise KeyError(f"Metric '{name}' is not registered.")
        return self._instruments[name]

    def __getitem__(self, name: str) -> MetricInstrument:
        return self.get(name)

    def reset_dynamic(self) -> None:
        for instrument in self.all():
            if instrument.definition.dynamic:
                instrument.reset()

    def render(self) -> bytes:
        return generate_latest(self.collector_registry)


def exporter_version() -> str:
    try:
        return importlib_metadata.version(DISTRIBUTION_NAME)
    except importlib_metadata.PackageNotFoundError:
        return "unknown"


def build_registry(
    dictionary: MetadataDictionary, registry: Optional[CollectorRegistry] = None
) -> MetricRegistry:
    """Register the exporter's metrics, deriving stream labels from ``dictionary``."""
    metrics = MetricRegistry(registry, dictionary.global_fields)
    stream_labels = dictionary.label_names()

    build_info = metrics.register(
        MetricDefinition(
            "nginx_rtmp_exporter_build_info",
            "A metric with constant value '1', labelled with nginx-rtmp-exporter's build information.",
            ("version", "python_version"),
        )
    )
    build_info.set(1, (exporter_version(), platform.python_version()))

    field_metric = metrics.register(
        MetricDefinition(
            "nginx_rtmp_exporter_metadata_fields",
            "A metric with constant value '1', labelled with available metadata fields.",
            ("field",),
        )
    )
    for field in dictionary.fields:
        field_metric.set(1, (field,))

    value_metric = metrics.register(
        MetricDefinition(
            "nginx_rtmp_exporter_metadata_values",
            "A metric with constant value '1', labelled with available metadata values.",
            ("stream", "field", "value"),
        )
    )
    for stream, field, value in dictionary.entries():
        value_metric.set(1, (stream, field, value))

    for definition in (
        MetricDefinition(
            "nginx_build_info",
            "A metric with either '0' or '1', labelled with NGINX's build info when available.",
            ("version", "compiler", "rtmp_version"),
            dynamic=True,
        ),
        MetricDefinition(
            "nginx_rtmp_application_count",
            "A metric tracking the number of NGINX RTMP applications.",
        ),
        MetricDefinition(
            "nginx_rtmp_active_streams",
            "A metric tracking the number of active RTMP streams, labelled by application.",
            ("application",),
            dynamic=True,
        ),
        MetricDefinition(
            "nginx_rtmp_incoming_bytes_total",
            "A metric tracking the total number of incoming bytes processed.",
        ),
        MetricDefinition(
            "nginx_rtmp_outgoing_bytes_total",
            "A metric tracking the total number of outgoing bytes processed.",
        ),
        MetricDefinition(
            "nginx_rtmp_incoming_bandwidth",
            "A metric tracking the incoming bandwidth to the server.",
        ),
        MetricDefinition(
            "nginx_rtmp_outgoing_bandwidth",
            "A metric tracking the outgoing bandwidth from the server.",
        ),
        MetricDefinition(
            "nginx_rtmp_stream_incoming_bytes_total",
            "A metric tracking the total received bytes from a stream, labelled by stream and application.",
            stream_labels,
            dynamic=True,
        ),
        MetricDefinition(
            "nginx_rtmp_stream_outgoing_bytes_total",
            "A metric tracking the total sent bytes by a given stream, labelled by stream and application.",
            stream_labels,
            dynamic=True,
        ),
        MetricDefinition(
            "nginx_rtmp_stream_incoming_bandwidth",
            "A metric tracking the incoming bandwidth of a given stream, labelled by stream and application.",
            stream_labels,
            dynamic=True,
        ),
        MetricDefinition(
            "nginx_rtmp_stream_outgoing_bandwidth",
            "A metric tracking the outgoing bandwidth of a given stream, labelled by stream and application.",
            stream_labels,
            dynamic=True,
        ),
        MetricDefinition(
            "nginx_rtmp_stream_bandwidth_video",
            "A metric tracking the video bandwidth of a given stream, labelled by stream and application.",
            stream_labels,
            dynamic=True,
        ),
        MetricDefinition(
            "nginx_rtmp_stream_bandwidth_audio",
            "A metric tracking the audio bandwidth of a given stream, labelled by stream and application.",
            stream_labels,
            dynamic=True,
        ),
        MetricDefinition(
            "nginx_rtmp_stream_publisher_avsync",
            "A metric tracking the A-V sync value of a given stream, labelled by stream and application.",
            stream_labels,
            dynamic=True,
        ),
        MetricDefinition(
            "nginx_rtmp_stream_total_clients",
            "A metric tracking the number of clients connected to a given stream, labelled by stream and application.",
            stream_labels,
            dynamic=True,
        ),
    ):
        metrics.register(definition)

    logger.debug(
        "Registered %d metrics with stream labels %s",
        len(list(metrics.all())),
        ", ".join(stream_labels),
    )
    return metrics
