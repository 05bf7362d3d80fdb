"""Decode the nginx-rtmp-module ``/stat`` XML page into a :class:`Snapshot`."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Callable, Optional, TypeVar, Union

from defusedxml import DefusedXmlException
from defusedxml import ElementTree as SafeElementTree

from .models import (
    Application,
    AudioMeta,
    Client,
    Snapshot,
    Stream,
    StreamMeta,
    VideoMeta,
)

T = TypeVar("T")


class SnapshotParseError(ValueError):
    """Raised when the statistics document does not have the expected shape."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


def _child(element: ET.Element, tag: str, path: str) -> ET.Element:
    found = element.find(tag)
    if found is None:
        raise SnapshotParseError(f"{path}.{tag}", "missing element")
    return found


def _text(element: ET.Element, tag: str, path: str) -> str:
    return (_child(element, tag, path).text or "").strip()


def _optional_text(element: ET.Element, tag: str) -> Optional[str]:
    found = element.find(tag)
    if found is None:
        return None
    text = (found.text or "").strip()
    return text or None


def _convert(raw: str, convert: Callable[[str], T], path: str) -> T:
    try:
        return convert(raw)
    except ValueError as exc:
        raise SnapshotParseError(path, f"invalid value {raw!r}") from exc


def _int(element: ET.Element, tag: str, path: str) -> int:
    return _convert(_text(element, tag, path), int, f"{path}.{tag}")


def _float(element: ET.Element, tag: str, path: str) -> float:
    return _convert(_text(element, tag, path), float, f"{path}.{tag}")


def _optional_int(element: ET.Element, tag: str, path: str) -> Optional[int]:
    raw = _optional_text(element, tag)
    if raw is None:
        return None
    return _convert(raw, int, f"{path}.{tag}")


def _flag(element: ET.Element, tag: str) -> bool:
    return element.find(tag) is not None


def _parse_video(element: ET.Element, path: str) -> VideoMeta:
    return VideoMeta(
        width=_int(element, "width", path),
        height=_int(element, "height", path),
        frame_rate=_float(element, "frame_rate", path),
        codec=_text(element, "codec", path),
        profile=_text(element, "profile", path),
        compat=_int(element, "compat", path),
        level=_float(element, "level", path),
    )


def _parse_audio(element: Optional[ET.Element], path: str) -> Optional[AudioMeta]:
    # nginx-rtmp writes an empty <audio/> block for streams without audio
    if element is None or len(element) == 0:
        return None
    return AudioMeta(
        codec=_text(element, "codec", path),
        profile=_text(element, "profile", path),
        channels=_int(element, "channels", path),
        sample_rate=_int(element, "sample_rate", path),
    )


def _parse_meta(element: Optional[ET.Element], path: str) -> Optional[StreamMeta]:
    if element is None:
        return None
    video = element.find("video")
    if video is None or len(video) == 0:
        return None
    return StreamMeta(
        video=_parse_video(video, f"{path}.video"),
        audio=_parse_audio(element.find("audio"), f"{path}.audio"),
    )


def _parse_client(element: ET.Element, path: str) -> Client:
    return Client(
        id=_int(element, "id", path),
        time=_optional_int(element, "time", path) or 0,
        address=_optional_text(element, "address"),
        flashver=_optional_text(element, "flashver"),
        pageurl=_optional_text(element, "pageurl"),
        dropped=_optional_int(element, "dropped", path) or 0,
        avsync=_optional_int(element, "avsync", path) or 0,
        timestamp=_optional_int(element, "timestamp", path) or 0,
        publishing=_flag(element, "publishing"),
        active=_flag(element, "active"),
    )


def _parse_stream(element: ET.Element, path: str) -> Stream:
    clients = tuple(
        _parse_client(client, f"{path}.client[{index}]")
        for index, client in enumerate(element.findall("client"))
    )
    return Stream(
        name=_text(element, "name", path),
        time=_optional_int(element, "time", path) or 0,
        bytes_in=_int(element, "bytes_in", path),
        bytes_out=_int(element, "bytes_out", path),
        bw_in=_int(element, "bw_in", path),
        bw_out=_int(element, "bw_out", path),
        bw_audio=_int(element, "bw_audio", path),
        bw_video=_int(element, "bw_video", path),
        meta=_parse_meta(element.find("meta"), f"{path}.meta"),
        clients=clients,
    )


def _parse_application(element: ET.Element, path: str) -> Application:
    live = element.find("live")
    streams = ()
    if live is not None:
        streams = tuple(
            _parse_stream(stream, f"{path}.live.stream[{index}]")
            for index, stream in enumerate(live.findall("stream"))
        )
    return Application(name=_text(element, "name", path), streams=streams)


def parse_stats(text: Union[str, bytes]) -> Snapshot:
    """Parse the body of the statistics page.

    Raises :class:`SnapshotParseError` naming the offending element path when a
    required element is missing or holds a malformed number.
    """
    try:
        root = SafeElementTree.fromstring(text)
    except (ET.ParseError, DefusedXmlException) as exc:
        raise SnapshotParseError("rtmp", f"malformed document: {exc}") from exc
    if root.tag != "rtmp":
        raise SnapshotParseError(root.tag, "expected <rtmp> root element")

    path = "rtmp"
    applications = tuple(
        _parse_application(application, f"{path}.server.application[{index}]")
        for index, application in enumerate(root.findall("server/application"))
    )
    return Snapshot(
        nginx_version=_text(root, "nginx_version", path),
        nginx_rtmp_version=_text(root, "nginx_rtmp_version", path),
        compiler=_text(root, "compiler", path),
        bytes_in=_int(root, "bytes_in", path),
        bytes_out=_int(root, "bytes_out", path),
        bw_in=_int(root, "bw_in", path),
        bw_out=_int(root, "bw_out", path),
        pid=_optional_int(root, "pid", path),
        uptime=_optional_int(root, "uptime", path),
        naccepted=_optional_int(root, "naccepted", path),
        applications=applications,
    )
