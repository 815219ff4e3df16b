"""RTP capability and parameter types with their JSON dictionary forms."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class MediaKind(str, Enum):
    """Media kind of a codec, stream or header extension."""

    AUDIO = "audio"
    VIDEO = "video"


class RtpHeaderExtensionDirection(str, Enum):
    """Direction in which an RTP header extension is supported."""

    SENDRECV = "sendrecv"
    SENDONLY = "sendonly"
    RECVONLY = "recvonly"
    INACTIVE = "inactive"


@dataclass
class RtcpFeedback:
    """An RTCP feedback message supported for a codec."""

    type: str = ""
    parameter: str = ""


# Attribute name and JSON key of every codec-specific parameter.
_CODEC_PARAM_KEYS: tuple[tuple[str, str], ...] = (
    ("packetization_mode", "packetization-mode"),
    ("profile_level_id", "profile-level-id"),
    ("level_asymmetry_allowed", "level-asymmetry-allowed"),
    ("profile_id", "profile-id"),
    ("apt", "apt"),
    ("sprop_stereo", "sprop-stereo"),
    ("useinbandfec", "useinbandfec"),
    ("usedtx", "usedtx"),
    ("maxplaybackrate", "maxplaybackrate"),
    ("x_google_min_bitrate", "x-google-min-bitrate"),
    ("x_google_max_bitrate", "x-google-max-bitrate"),
    ("x_google_start_bitrate", "x-google-start-bitrate"),
    ("channel_mapping", "channel_mapping"),
    ("num_streams", "num_streams"),
    ("coupled_streams", "coupled_streams"),
    ("minptime", "minptime"),
)


@dataclass
class RtpCodecSpecificParameters:
    """Codec-specific parameters; some of them are critical for codec matching."""

    packetization_mode: int = 0
    profile_level_id: str = ""
    level_asymmetry_allowed: int = 0
    profile_id: int | None = None
    apt: int = 0
    sprop_stereo: int = 0
    useinbandfec: int = 0
    usedtx: int = 0
    maxplaybackrate: int = 0
    x_google_min_bitrate: int = 0
    x_google_max_bitrate: int = 0
    x_google_start_bitrate: int = 0
    channel_mapping: str = ""
    num_streams: int = 0
    coupled_streams: int = 0
    minptime: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form, leaving out unset parameters."""
        out: dict[str, Any] = {}
        for attr, key in _CODEC_PARAM_KEYS:
            value = getattr(self, attr)
            if attr == "profile_id":
                if value is not None:
                    out[key] = value
            elif value:
                out[key] = value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RtpCodecSpecificParameters:
        """Build from a JSON dictionary; unknown keys are ignored."""
        data = data or {}
        return cls(**{attr: data[key] for attr, key in _CODEC_PARAM_KEYS if key in data})


@dataclass
class RtpCodecCapability:
    """Capabilities of a codec within RTP capabilities."""

    kind: MediaKind | None = None
    mime_type: str = ""
    preferred_payload_type: int = 0
    clock_rate: int = 0
    channels: int = 0
    parameters: RtpCodecSpecificParameters = field(default_factory=RtpCodecSpecificParameters)
    rtcp_feedback: list[RtcpFeedback] = field(default_factory=list)

    def is_rtx(self) -> bool:
        """Whether this is an RTX (retransmission) codec."""
        return self.mime_type.lower().endswith("/rtx")


@dataclass
class RtpHeaderExtension:
    """A supported RTP header extension; a kind of None means any kind."""

    kind: MediaKind | None = None
    uri: str = ""
    preferred_id: int = 0
    preferred_encrypt: bool = False
    direction: RtpHeaderExtensionDirection | None = None


@dataclass
class RtpCodecParameters:
    """Codec settings within RTP parameters."""

    mime_type: str = ""
    payload_type: int = 0
    clock_rate: int = 0
    channels: int = 0
    parameters: RtpCodecSpecificParameters = field(default_factory=RtpCodecSpecificParameters)
    rtcp_feedback: list[RtcpFeedback] = field(default_factory=list)

    def is_rtx(self) -> bool:
        """Whether this is an RTX (retransmission) codec."""
        return self.mime_type.lower().endswith("/rtx")


@dataclass
class RtpEncodingRtx:
    """The RTX stream associated with an RTP stream."""

    ssrc: int = 0


@dataclass
class RtpEncodingParameters:
    """An encoding: a media RTP stream and its associated RTX stream, if any."""

    ssrc: int = 0
    rid: str = ""
    codec_payload_type: int = 0
    rtx: RtpEncodingRtx | None = None
    dtx: bool = False
    scalability_mode: str = ""
    scale_resolution_down_by: int = 0
    max_bitrate: int = 0


@dataclass
class RtpHeaderExtensionParameters:
    """An RTP header extension in use within RTP parameters."""

    uri: str = ""
    id: int = 0
    encrypt: bool = False
    parameters: RtpCodecSpecificParameters | None = None


@dataclass
class RtcpParameters:
    """RTCP settings within RTP parameters."""

    cname: str = ""
    reduced_size: bool | None = None
    mux: bool | None = None


@dataclass
class RtpParameters:
    """A media stream as sent or received through a producer or consumer."""

    mid: str = ""
    codecs: list[RtpCodecParameters] = field(default_factory=list)
    header_extensions: list[RtpHeaderExtensionParameters] = field(default_factory=list)
    encodings: list[RtpEncodingParameters] = field(default_factory=list)
    rtcp: RtcpParameters = field(default_factory=RtcpParameters)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form."""
        out: dict[str, Any] = {}
        if self.mid:
            out["mid"] = self.mid
        out["codecs"] = [_codec_to_dict(codec) for codec in self.codecs]
        if self.header_extensions:
            out["headerExtensions"] = [_ext_to_dict(ext) for ext in self.header_extensions]
        out["encodings"] = [_encoding_to_dict(enc) for enc in self.encodings]
        out["rtcp"] = _rtcp_to_dict(self.rtcp)
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RtpParameters:
        """Build from a JSON dictionary."""
        data = data or {}
        return cls(
            mid=data.get("mid") or "",
            codecs=[_codec_from_dict(c) for c in data.get("codecs") or []],
            header_extensions=[_ext_from_dict(e) for e in data.get("headerExtensions") or []],
            encodings=[_encoding_from_dict(e) for e in data.get("encodings") or []],
            rtcp=_rtcp_from_dict(data.get("rtcp") or {}),
        )


@dataclass
class RtpCapabilities:
    """What an endpoint or router can receive at media level."""

    codecs: list[RtpCodecCapability] = field(default_factory=list)
    header_extensions: list[RtpHeaderExtension] = field(default_factory=list)
    fec_mechanisms: list[str] = field(default_factory=list)


def _feedback_to_dict(fb: RtcpFeedback) -> dict[str, Any]:
    out: dict[str, Any] = {"type": fb.type}
    if fb.parameter:
        out["parameter"] = fb.parameter
    return out


def _feedback_from_dict(data: dict[str, Any]) -> RtcpFeedback:
    return RtcpFeedback(type=data.get("type") or "", parameter=data.get("parameter") or "")


def _codec_to_dict(codec: RtpCodecParameters) -> dict[str, Any]:
    out: dict[str, Any] = {
        "mimeType": codec.mime_type,
        "payloadType": codec.payload_type,
        "clockRate": codec.clock_rate,
    }
    if codec.channels:
        out["channels"] = codec.channels
    out["parameters"] = codec.parameters.to_dict()
    if codec.rtcp_feedback:
        out["rtcpFeedback"] = [_feedback_to_dict(fb) for fb in codec.rtcp_feedback]
    return out


def _codec_from_dict(data: dict[str, Any]) -> RtpCodecParameters:
    return RtpCodecParameters(
        mime_type=data.get("mimeType") or "",
        payload_type=data.get("payloadType") or 0,
        clock_rate=data.get("clockRate") or 0,
        channels=data.get("channels") or 0,
        parameters=RtpCodecSpecificParameters.from_dict(data.get("parameters")),
        rtcp_feedback=[_feedback_from_dict(fb) for fb in data.get("rtcpFeedback") or []],
    )


def _ext_to_dict(ext: RtpHeaderExtensionParameters) -> dict[str, Any]:
    out: dict[str, Any] = {"uri": ext.uri, "id": ext.id}
    if ext.encrypt:
        out["encrypt"] = True
    if ext.parameters is not None:
        out["parameters"] = ext.parameters.to_dict()
    return out


def _ext_from_dict(data: dict[str, Any]) -> RtpHeaderExtensionParameters:
    params = data.get("parameters")
    return RtpHeaderExtensionParameters(
        uri=data.get("uri") or "",
        id=data.get("id") or 0,
        encrypt=bool(data.get("encrypt")),
        parameters=None if params is None else RtpCodecSpecificParameters.from_dict(params),
    )


_ENCODING_KEYS: tuple[tuple[str, str], ...] = (
    ("ssrc", "ssrc"),
    ("rid", "rid"),
    ("codec_payload_type", "codecPayloadType"),
    ("dtx", "dtx"),
    ("scalability_mode", "scalabilityMode"),
    ("scale_resolution_down_by", "scaleResolutionDownBy"),
    ("max_bitrate", "maxBitrate"),
)


def _encoding_to_dict(enc: RtpEncodingParameters) -> dict[str, Any]:
    out = {key: getattr(enc, attr) for attr, key in _ENCODING_KEYS if getattr(enc, attr)}
    if enc.rtx is not None:
        out["rtx"] = {"ssrc": enc.rtx.ssrc}
    return out


def _encoding_from_dict(data: dict[str, Any]) -> RtpEncodingParameters:
    enc = RtpEncodingParameters(
        **{attr: data[key] for attr, key in _ENCODING_KEYS if data.get(key) is not None}
    )
    rtx = data.get("rtx")
    if rtx is not None:
        enc.rtx = RtpEncodingRtx(ssrc=rtx.get("ssrc") or 0)
    return enc


def _rtcp_to_dict(rtcp: RtcpParameters) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if rtcp.cname:
        out["cname"] = rtcp.cname
    if rtcp.reduced_size is not None:
        out["reducedSize"] = rtcp.reduced_size
    if rtcp.mux is not None:
        out["mux"] = rtcp.mux
    return out


def _rtcp_from_dict(data: dict[str, Any]) -> RtcpParameters:
    return RtcpParameters(
        cname=data.get("cname") or "",
        reduced_size=data.get("reducedSize"),
        mux=data.get("mux"),
    )