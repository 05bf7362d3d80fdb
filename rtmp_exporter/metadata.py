"""Static per-stream metadata attached to stream metrics as extra labels.

The metadata file declares an ordered list of ``fields`` and, per stream
name, values for some of those fields::

    fields = ["team", "region"]

    [metadata.camera-1]
    team = "news"

Every configured field becomes a label on each per-stream metric. Streams
without a value for a field are labelled ``"unspecified"``. An optional
``global_fields`` table adds fixed labels to every exported metric.
"""

from __future__ import annotations

import enum
import json
import re
import tomllib
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

UNSPECIFIED = "unspecified"
STREAM_LABELS = ("application", "stream")

_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


class MetadataError(Exception):
    """Raised when the metadata file cannot be used to build stream labels."""


class MetadataFormat(str, enum.Enum):
    JSON = "json"
    TOML = "toml"

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str):
            lowered = value.lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class MetaFile(BaseModel):
    """On-disk shape of a metadata file."""

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    fields: List[str]
    metadata: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    # labels attached with the same value to every exported metric
    global_fields: Dict[str, str] = Field(default_factory=dict)


def _validate_field_name(field: str) -> None:
    if not _LABEL_NAME_RE.match(field) or field.startswith("__"):
        raise MetadataError(f"Invalid meta field name: {field!r}")
    if field in STREAM_LABELS:
        raise MetadataError(f"Meta field {field!r} collides with a built-in stream label")


class MetadataDictionary:
    """Fixed field schema plus the stream -> field -> value mapping."""

    def __init__(
        self, fields: Iterable[str] = (), global_fields: Optional[Mapping[str, str]] = None
    ) -> None:
        ordered: List[str] = []
        for field in fields:
            _validate_field_name(field)
            if field in ordered:
                raise MetadataError(f"Duplicate meta field: {field!r}")
            ordered.append(field)
        self._fields: Tuple[str, ...] = tuple(ordered)
        self._metadata: Dict[str, Dict[str, str]] = {}
        self._global_fields: Dict[str, str] = {}
        for name, value in (global_fields or {}).items():
            _validate_field_name(name)
            if name in self._fields:
                raise MetadataError(f"Global field {name!r} collides with a meta field")
            self._global_fields[name] = value

    @property
    def fields(self) -> Tuple[str, ...]:
        return self._fields

    @property
    def global_fields(self) -> Dict[str, str]:
        return dict(self._global_fields)

    def label_names(self) -> Tuple[str, ...]:
        return STREAM_LABELS + self._fields

    def add_value(self, stream: str, field: str, value: str) -> None:
        if field not in self._fields:
            raise MetadataError(f"Unknown meta field: {field}")
        self._metadata.setdefault(stream, {})[field] = value

    def add_values(self, stream: str, values: Mapping[str, str]) -> None:
        for field, value in values.items():
            self.add_value(stream, field, value)

    def values_for(self, stream: str) -> Tuple[str, ...]:
        """Return the stream's values in schema order."""
        recorded = self._metadata.get(stream, {})
        return tuple(recorded.get(field, UNSPECIFIED) for field in self._fields)

    def entries(self) -> List[Tuple[str, str, str]]:
        return [
            (stream, field, value)
            for stream, values in self._metadata.items()
            for field, value in values.items()
        ]

    def __len__(self) -> int:
        return len(self._metadata)

    @classmethod
    def from_meta_file(cls, meta_file: MetaFile) -> "MetadataDictionary":
        dictionary = cls(meta_file.fields, meta_file.global_fields)
        for stream, values in meta_file.metadata.items():
            dictionary.add_values(stream, values)
        return dictionary

    @classmethod
    def from_mapping(cls, raw: object) -> "MetadataDictionary":
        try:
            meta_file = MetaFile.model_validate(raw)
        except ValidationError as exc:
            raise MetadataError(f"Malformed meta file: {exc}") from exc
        return cls.from_meta_file(meta_file)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "MetadataDictionary":
        text = _read(path)
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise MetadataError(f"Failed to parse meta file {path}: {exc}") from exc
        return cls.from_mapping(raw)

    @classmethod
    def from_toml(cls, path: Union[str, Path]) -> "MetadataDictionary":
        text = _read(path)
        try:
            raw = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise MetadataError(f"Failed to parse meta file {path}: {exc}") from exc
        return cls.from_mapping(raw)

    @classmethod
    def from_file(
        cls, path: Union[str, Path], format: MetadataFormat = MetadataFormat.JSON
    ) -> "MetadataDictionary":
        if format is MetadataFormat.TOML:
            return cls.from_toml(path)
        return cls.from_json(path)


def _read(path: Union[str, Path]) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise MetadataError(f"Failed to read meta file {path}: {exc}") from exc


def build_labels(
    dictionary: MetadataDictionary, application: str, stream: str
) -> Tuple[str, ...]:
    """Label vector for a per-stream series: application, stream, then fields."""
    return (application, stream) + dictionary.values_for(stream)
