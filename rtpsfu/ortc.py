"""RTP capability negotiation and parameter mapping between producers and consumers."""

from __future__ import annotations

import copy
import dataclasses
import random
import re
from dataclasses import dataclass, field
from typing import Union

from rtpsfu.rtp_parameters import (
    MediaKind,
    RtcpFeedback,
    RtcpParameters,
    RtpCapabilities,
    RtpCodecCapability,
    RtpCodecParameters,
    RtpCodecSpecificParameters,
    RtpEncodingParameters,
    RtpEncodingRtx,
    RtpHeaderExtensionDirection,
    RtpHeaderExtensionParameters,
    RtpParameters,
)
from rtpsfu.scalability_modes import parse_scalability_mode
from rtpsfu.validation import validate_rtp_capabilities, validate_rtp_codec_capability

DYNAMIC_PAYLOAD_TYPES: tuple[int, ...] = (
    100, 101, 102, 103, 104, 105, 106, 107, 108, 109, 110, 111, 112, 113, 114, 115,
    116, 117, 118, 119, 120, 121, 122, 123, 124, 125, 126, 127, 96, 97, 98, 99, 77,
    78, 79, 80, 81, 82, 83, 84, 85, 86, 87, 88, 89, 90, 91, 92, 93, 94, 95, 35, 36,
    37, 38, 39, 40, 41, 42, 43, 44, 45, 46, 47, 48, 49, 50, 51, 52, 53, 54, 55, 56,
    57, 58, 59, 60, 61, 62, 63, 64, 65, 66, 67, 68, 69, 70, 71,
)

MID_URI = "urn:ietf:params:rtp-hdrext:sdes:mid"
ABS_SEND_TIME_URI = "http://www.webrtc.org/experiments/rtp-hdrext/abs-send-time"
TRANSPORT_CC_URI = "http://www.ietf.org/id/draft-holmer-rmcat-transport-wide-cc-extensions-01"

_SSRC_MASK = 0xFFFFFFFF
_PROFILE_LEVEL_ID_RE = re.compile(r"^[0-9a-fA-F]{6}$")

AnyCodec = Union[RtpCodecParameters, RtpCodecCapability]


class UnsupportedError(Exception):
    """Raised when a codec or feature is not supported."""


@dataclass
class RtpMappingCodec:
    """Maps a producer payload type to the router's payload type."""

    payload_type: int
    mapped_payload_type: int


@dataclass
class RtpMappingEncoding:
    """Maps a producer encoding to the SSRC used inside the router."""

    mapped_ssrc: int
    ssrc: int = 0
    rid: str = ""
    scalability_mode: str = ""


@dataclass
class RtpMapping:
    """Codec and encoding mapping of a producer."""

    codecs: list[RtpMappingCodec] = field(default_factory=list)
    encodings: list[RtpMappingEncoding] = field(default_factory=list)


def _random_ssrc() -> int:
    return random.randint(100_000_000, 999_999_999)


def _merge_parameters(
    target: RtpCodecSpecificParameters, source: RtpCodecSpecificParameters
) -> None:
    """Copy every set field of ``source`` onto ``target``."""
    for f in dataclasses.fields(source):
        value = getattr(source, f.name)
        if value is not None and value != 0 and value != "":
            setattr(target, f.name, value)


def generate_router_rtp_capabilities(
    media_codecs: list[RtpCodecCapability], supported_capabilities: RtpCapabilities
) -> RtpCapabilities:
    """Build router RTP capabilities from the wanted media codecs and the supported ones."""
    supported = copy.deepcopy(supported_capabilities)
    caps = RtpCapabilities(header_extensions=supported.header_extensions)
    dynamic_payload_types = list(DYNAMIC_PAYLOAD_TYPES)

    for media_codec in media_codecs:
        validate_rtp_codec_capability(media_codec)
        matched = find_matched_codec(media_codec, supported.codecs)
        if matched is None:
            raise UnsupportedError(
                f"media codec not supported [mimeType:{media_codec.mime_type}]"
            )
        codec = copy.deepcopy(matched)

        if media_codec.preferred_payload_type > 0:
            codec.preferred_payload_type = media_codec.preferred_payload_type
            if codec.preferred_payload_type in dynamic_payload_types:
                dynamic_payload_types.remove(codec.preferred_payload_type)
        elif codec.preferred_payload_type == 0:
            if not dynamic_payload_types:
                raise RuntimeError("cannot allocate more dynamic codec payload types")
            codec.preferred_payload_type = dynamic_payload_types.pop(0)

        if any(c.preferred_payload_type == codec.preferred_payload_type for c in caps.codecs):
            raise TypeError("duplicated codec.preferredPayloadType")

        _merge_parameters(codec.parameters, media_codec.parameters)
        caps.codecs.append(codec)

        if codec.kind == MediaKind.VIDEO:
            if not dynamic_payload_types:
                raise RuntimeError("cannot allocate more dynamic codec payload types")
            caps.codecs.append(
                RtpCodecCapability(
                    kind=MediaKind.VIDEO,
                    mime_type=f"{MediaKind.VIDEO.value}/rtx",
                    preferred_payload_type=dynamic_payload_types.pop(0),
                    clock_rate=codec.clock_rate,
                    parameters=RtpCodecSpecificParameters(apt=codec.preferred_payload_type),
                    rtcp_feedback=[],
                )
            )

    return caps


def get_producer_rtp_parameters_mapping(
    params: RtpParameters, caps: RtpCapabilities
) -> RtpMapping:
    """Map producer payload types and encodings to the values the router expects."""
    # Keyed by identity: codec dataclasses are not hashable.
    codec_to_cap: dict[int, tuple[RtpCodecParameters, RtpCodecCapability]] = {}

    for codec in params.codecs:
        if codec.is_rtx():
            continue
        matched = find_matched_codec(codec, caps.codecs, strict=True, modify=True)
        if matched is None:
            raise UnsupportedError(
                f"unsupported codec [mimeType:{codec.mime_type}, "
                f"payloadType:{codec.payload_type}]"
            )
        codec_to_cap[id(codec)] = (codec, matched)

    for codec in params.codecs:
        if not codec.is_rtx():
            continue
        associated = next(
            (m for m in params.codecs if m.payload_type == codec.parameters.apt), None
        )
        if associated is None:
            raise TypeError(f"missing media codec found for RTX PT {codec.payload_type}")
        entry = codec_to_cap.get(id(associated))
        if entry is None:
            raise TypeError(f"missing media codec found for RTX PT {codec.payload_type}")
        cap_media_codec = entry[1]
        cap_rtx = next(
            (
                c
                for c in caps.codecs
                if c.is_rtx() and c.parameters.apt == cap_media_codec.preferred_payload_type
            ),
            None,
        )
        if cap_rtx is None:
            raise UnsupportedError(
                f"no RTX codec for capability codec PT {cap_media_codec.preferred_payload_type}"
            )
        codec_to_cap[id(codec)] = (codec, cap_rtx)

    mapping = RtpMapping(
        codecs=[
            RtpMappingCodec(
                payload_type=codec.payload_type,
                mapped_payload_type=cap.preferred_payload_type,
            )
            for codec, cap in codec_to_cap.values()
        ]
    )

    mapped_ssrc = _random_ssrc()
    for encoding in params.encodings:
        mapping.encodings.append(
            RtpMappingEncoding(
                rid=encoding.rid,
                ssrc=encoding.ssrc,
                mapped_ssrc=mapped_ssrc,
                scalability_mode=encoding.scalability_mode,
            )
        )
        mapped_ssrc = (mapped_ssrc + 1) & _SSRC_MASK

    return mapping


def get_consumable_rtp_parameters(
    kind: MediaKind,
    params: RtpParameters,
    caps: RtpCapabilities,
    rtp_mapping: RtpMapping,
) -> RtpParameters:
    """Build the RTP parameters consumers see, from a producer's parameters."""
    consumable = RtpParameters()

    for codec in params.codecs:
        if codec.is_rtx():
            continue
        consumable_pt = next(
            (e.mapped_payload_type for e in rtp_mapping.codecs if e.payload_type == codec.payload_type),
            0,
        )
        cap_codec = next(
            (c for c in caps.codecs if c.preferred_payload_type == consumable_pt), None
        )
        if cap_codec is None:
            raise ValueError(f"no capability codec for payload type {consumable_pt}")

        consumable_codec = RtpCodecParameters(
            mime_type=cap_codec.mime_type,
            payload_type=cap_codec.preferred_payload_type,
            clock_rate=cap_codec.clock_rate,
            channels=cap_codec.channels,
            parameters=copy.deepcopy(codec.parameters),  # keep the producer parameters
            rtcp_feedback=copy.deepcopy(cap_codec.rtcp_feedback),
        )
        consumable.codecs.append(consumable_codec)

        cap_rtx = next(
            (
                c
                for c in caps.codecs
                if c.is_rtx() and c.parameters.apt == consumable_codec.payload_type
            ),
            None,
        )
        if cap_rtx is not None:
            consumable.codecs.append(
                RtpCodecParameters(
                    mime_type=cap_rtx.mime_type,
                    payload_type=cap_rtx.preferred_payload_type,
                    clock_rate=cap_rtx.clock_rate,
                    channels=cap_rtx.channels,
                    parameters=copy.deepcopy(cap_rtx.parameters),
                    rtcp_feedback=copy.deepcopy(cap_rtx.rtcp_feedback),
                )
            )

    sending = (RtpHeaderExtensionDirection.SENDRECV, RtpHeaderExtensionDirection.SENDONLY)
    for cap_ext in caps.header_extensions:
        if cap_ext.kind != kind or cap_ext.direction not in sending:
            continue
        consumable.header_extensions.append(
            RtpHeaderExtensionParameters(
                uri=cap_ext.uri, id=cap_ext.preferred_id, encrypt=cap_ext.preferred_encrypt
            )
        )

    for encoding, mapped in zip(params.encodings, rtp_mapping.encodings):
        consumable.encodings.append(
            dataclasses.replace(
                encoding, rid="", rtx=None, codec_payload_type=0, ssrc=mapped.mapped_ssrc
            )
        )
    if len(rtp_mapping.encodings) < len(params.encodings):
        raise ValueError("missing encoding mapping")

    consumable.rtcp = RtcpParameters(cname=params.rtcp.cname, reduced_size=True, mux=True)
    return consumable


def can_consume(consumable_params: RtpParameters, caps: RtpCapabilities) -> bool:
    """Whether an endpoint with ``caps`` can consume the given consumable parameters."""
    validate_rtp_capabilities(caps)

    matching = [
        matched
        for codec in consumable_params.codecs
        if (matched := find_matched_codec(codec, caps.codecs, strict=True)) is not None
    ]
    return bool(matching) and not matching[0].is_rtx()


def _filter_feedback(codecs: list[RtpCodecParameters], excluded: set[str]) -> None:
    for codec in codecs:
        codec.rtcp_feedback = [fb for fb in codec.rtcp_feedback if fb.type not in excluded]


def get_consumer_rtp_parameters(
    consumable_params: RtpParameters, caps: RtpCapabilities, pipe: bool = False
) -> RtpParameters:
    """Build the RTP parameters of a specific consumer given its RTP capabilities."""
    for cap_codec in caps.codecs:
        validate_rtp_codec_capability(cap_codec)

    consumer = RtpParameters()
    matched_codecs: list[RtpCodecParameters] = []
    for codec in copy.deepcopy(consumable_params.codecs):
        matched = find_matched_codec(codec, caps.codecs, strict=True)
        if matched is None:
            continue
        codec.rtcp_feedback = copy.deepcopy(matched.rtcp_feedback)
        matched_codecs.append(codec)

    rtx_supported = False
    for codec in matched_codecs:
        if codec.is_rtx():
            if any(m.payload_type == codec.parameters.apt for m in matched_codecs):
                rtx_supported = True
                consumer.codecs.append(codec)
        else:
            consumer.codecs.append(codec)

    if not consumer.codecs or consumer.codecs[0].is_rtx():
        raise UnsupportedError("no compatible media codecs")

    for ext in consumable_params.header_extensions:
        if any(c.preferred_id == ext.id and c.uri == ext.uri for c in caps.header_extensions):
            consumer.header_extensions.append(copy.deepcopy(ext))

    uris = {ext.uri for ext in consumer.header_extensions}
    if TRANSPORT_CC_URI in uris:
        _filter_feedback(consumer.codecs, {"goog-remb"})
    elif ABS_SEND_TIME_URI in uris:
        _filter_feedback(consumer.codecs, {"transport-cc"})
    else:
        _filter_feedback(consumer.codecs, {"transport-cc", "goog-remb"})

    if pipe:
        base_ssrc = _random_ssrc()
        base_rtx_ssrc = _random_ssrc()
        for i, encoding in enumerate(copy.deepcopy(consumable_params.encodings)):
            encoding.ssrc = (base_ssrc + i) & _SSRC_MASK
            encoding.rtx = (
                RtpEncodingRtx(ssrc=(base_rtx_ssrc + i) & _SSRC_MASK) if rtx_supported else None
            )
            consumer.encodings.append(encoding)
        return consumer

    encoding = RtpEncodingParameters(ssrc=_random_ssrc())
    if rtx_supported:
        encoding.rtx = RtpEncodingRtx(ssrc=_random_ssrc())

    scalability_mode = next(
        (e.scalability_mode for e in consumable_params.encodings if e.scalability_mode), ""
    )
    if len(consumable_params.encodings) > 1:
        temporal_layers = parse_scalability_mode(scalability_mode).temporal_layers
        scalability_mode = f"L{len(consumable_params.encodings)}T{temporal_layers}"
    encoding.scalability_mode = scalability_mode

    max_bitrate = max((e.max_bitrate for e in consumable_params.encodings), default=0)
    if max_bitrate > 0:
        encoding.max_bitrate = max_bitrate

    consumer.encodings.append(encoding)
    consumer.rtcp = copy.deepcopy(consumable_params.rtcp)
    return consumer


def get_pipe_consumer_rtp_parameters(
    consumable_params: RtpParameters, enable_rtx: bool = False
) -> RtpParameters:
    """Build pipe consumer parameters: all encodings kept, BWE removed, RTX optional."""
    consumer = RtpParameters(rtcp=copy.deepcopy(consumable_params.rtcp))

    def keep(fb: RtcpFeedback) -> bool:
        return (
            (fb.type == "nack" and fb.parameter == "pli")
            or (fb.type == "ccm" and fb.parameter == "fir")
            or (enable_rtx and fb.type == "nack" and not fb.parameter)
        )

    for codec in copy.deepcopy(consumable_params.codecs):
        if not enable_rtx and codec.is_rtx():
            continue
        codec.rtcp_feedback = [fb for fb in codec.rtcp_feedback if keep(fb)]
        consumer.codecs.append(codec)

    dropped = {MID_URI, ABS_SEND_TIME_URI, TRANSPORT_CC_URI}
    consumer.header_extensions = [
        copy.deepcopy(ext) for ext in consumable_params.header_extensions if ext.uri not in dropped
    ]

    base_ssrc = _random_ssrc()
    base_rtx_ssrc = _random_ssrc()
    for i, encoding in enumerate(copy.deepcopy(consumable_params.encodings)):
        encoding.ssrc = (base_ssrc + i) & _SSRC_MASK
        encoding.rtx = (
            RtpEncodingRtx(ssrc=(base_rtx_ssrc + i) & _SSRC_MASK) if enable_rtx else None
        )
        consumer.encodings.append(encoding)

    return consumer


def find_matched_codec(
    a_codec: AnyCodec,
    b_codecs: list[RtpCodecCapability],
    strict: bool = False,
    modify: bool = False,
) -> RtpCodecCapability | None:
    """Return the first capability codec matching ``a_codec``, or None."""
    if isinstance(a_codec, RtpCodecCapability):
        a_codec = RtpCodecParameters(
            mime_type=a_codec.mime_type,
            clock_rate=a_codec.clock_rate,
            channels=a_codec.channels,
            parameters=copy.deepcopy(a_codec.parameters),
        )
    return next((b for b in b_codecs if match_codecs(a_codec, b, strict, modify)), None)


def _valid_profile_level_id(value: str) -> bool:
    return not value or _PROFILE_LEVEL_ID_RE.match(value) is not None


def match_codecs(
    a_codec: AnyCodec,
    b_codec: RtpCodecCapability,
    strict: bool = False,
    modify: bool = False,
) -> bool:
    """Whether two codecs match; ``strict`` also compares codec-critical parameters."""
    a_mime = a_codec.mime_type.lower()
    if a_mime != b_codec.mime_type.lower():
        return False
    if a_codec.clock_rate != b_codec.clock_rate:
        return False
    if (
        a_mime.startswith("audio/")
        and a_codec.channels > 0
        and b_codec.channels > 0
        and a_codec.channels != b_codec.channels
    ):
        return False

    a_params, b_params = a_codec.parameters, b_codec.parameters

    if a_mime == "audio/multiopus":
        if a_params.num_streams != b_params.num_streams:
            return False
        if a_params.coupled_streams != b_params.coupled_streams:
            return False
    elif a_mime == "video/h264" and strict:
        if a_params.packetization_mode != b_params.packetization_mode:
            return False
        if not (
            _valid_profile_level_id(a_params.profile_level_id)
            and _valid_profile_level_id(b_params.profile_level_id)
        ):
            return False
        if modify and not a_params.profile_level_id:
            a_params.profile_level_id = b_params.profile_level_id
    elif a_mime == "video/vp9" and strict:
        if a_params.profile_id != b_params.profile_id:
            return False

    return True