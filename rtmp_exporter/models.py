from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class VideoMeta:
    width: int
    height: int
    frame_rate: float
    codec: str
    profile: str
    compat: int
    level: float


@dataclass(frozen=True)
class AudioMeta:
    codec: str
    profile: str
    channels: int
    sample_rate: int


@dataclass(frozen=True)
class StreamMeta:
    """Codec metadata reported once a publisher has attached to a stream."""

    video: VideoMeta
    audio: Optional[AudioMeta] = None  # None when the publisher sends no audio


@dataclass(frozen=True)
class Client:
    """A single connection to a stream, either the publisher or a player."""

    id: int
    time: int = 0
    address: Optional[str] = None
    flashver: Optional[str] = None
    pageurl: Optional[str] = None
    dropped: int = 0
    avsync: int = 0
    timestamp: int = 0
    publishing: bool = False
    active: bool = False


@dataclass(frozen=True)
class Stream:
    name: str
    time: int = 0
    bytes_in: int = 0
    bytes_out: int = 0
    bw_in: int = 0
    bw_out: int = 0
    bw_audio: int = 0
    bw_video: int = 0
    meta: Optional[StreamMeta] = None
    clients: Tuple[Client, ...] = field(default_factory=tuple)

    def publisher(self) -> Optional[Client]:
        for client in self.clients:
            if client.publishing:
                return client
        return None


@dataclass(frozen=True)
class Application:
    name: str
    streams: Tuple[Stream, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Snapshot:
    """One poll of the nginx-rtmp statistics page."""

    nginx_version: str
    nginx_rtmp_version: str
    compiler: str
    bytes_in: int = 0
    bytes_out: int = 0
    bw_in: int = 0
    bw_out: int = 0
    pid: Optional[int] = None
    uptime: Optional[int] = None
    naccepted: Optional[int] = None
    applications: Tuple[Application, ...] = field(default_factory=tuple)
