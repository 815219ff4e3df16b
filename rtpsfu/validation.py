"""Validation of RTP and SCTP capabilities and parameters.

The validators may fill in missing optional fields with their defaults and
raise ``TypeError`` when a mandatory field is missing or invalid.

The SCTP validators accept any object that has the attributes they read:
``num_streams`` (with ``os`` and ``mis``) for capabilities; ``port``, ``os``,
``mis`` and ``max_message_size`` for SCTP parameters; and ``ordered``,
``max_packet_life_time`` and ``max_retransmits`` for stream parameters.
"""

from __future__ import annotations

from typing import Any

from rtpsfu.rtp_parameters import (
    MediaKind,
    RtcpFeedback,
    RtcpParameters,
    RtpCapabilities,
    RtpCodecCapability,
    RtpCodecParameters,
    RtpHeaderExtension,
    RtpHeaderExtensionDirection,
    RtpHeaderExtensionParameters,
    RtpParameters,
)

_MEDIA_PREFIXES = ("audio/", "video/")


def _media_kind(mime_type: str) -> MediaKind:
    mime = mime_type.lower()
    if not mime.startswith(_MEDIA_PREFIXES):
        raise TypeError("invalid codec.mimeType")
    return MediaKind(mime.split("/", 1)[0])


def validate_rtp_capabilities(caps: RtpCapabilities) -> None:
    """Validate RTP capabilities, filling in defaults."""
    for codec in caps.codecs:
        validate_rtp_codec_capability(codec)
    for ext in caps.header_extensions:
        validate_rtp_header_extension(ext)


def validate_rtp_codec_capability(codec: RtpCodecCapability) -> None:
    """Validate a codec capability; sets its kind and, for audio, default channels."""
    codec.kind = _media_kind(codec.mime_type)

    if not codec.clock_rate:
        raise TypeError("missing codec.clockRate")

    if codec.kind is MediaKind.AUDIO and not codec.channels:
        codec.channels = 1

    for fb in codec.rtcp_feedback:
        validate_rtcp_feedback(fb)


def validate_rtcp_feedback(fb: RtcpFeedback) -> None:
    """Validate an RTCP feedback entry."""
    if not fb.type:
        raise TypeError("missing fb.type")


def validate_rtp_header_extension(ext: RtpHeaderExtension) -> None:
    """Validate a header extension capability; direction defaults to sendrecv."""
    if ext.kind and ext.kind not in (MediaKind.AUDIO, MediaKind.VIDEO):
        raise TypeError("invalid ext.kind")

    if not ext.uri:
        raise TypeError("missing ext.uri")

    if not ext.preferred_id:
        raise TypeError("missing ext.preferredId")

    if not ext.direction:
        ext.direction = RtpHeaderExtensionDirection.SENDRECV


def validate_rtp_parameters(params: RtpParameters) -> None:
    """Validate RTP parameters, filling in defaults."""
    for codec in params.codecs:
        validate_rtp_codec_parameters(codec)
    for ext in params.header_extensions:
        validate_rtp_header_extension_parameters(ext)
    validate_rtcp_parameters(params.rtcp)


def validate_rtp_codec_parameters(codec: RtpCodecParameters) -> None:
    """Validate codec parameters; audio codecs default to one channel."""
    mime = codec.mime_type.lower()
    if not mime.startswith(_MEDIA_PREFIXES):
        raise TypeError("invalid codec.mimeType")

    if not codec.clock_rate:
        raise TypeError("missing codec.clockRate")

    if MediaKind(mime.split("/", 1)[0]) is MediaKind.AUDIO and not codec.channels:
        codec.channels = 1

    for fb in codec.rtcp_feedback:
        validate_rtcp_feedback(fb)


def validate_rtp_header_extension_parameters(ext: RtpHeaderExtensionParameters) -> None:
    """Validate a header extension in use."""
    if not ext.uri:
        raise TypeError("missing ext.uri")
    if not ext.id:
        raise TypeError("missing ext.id")


def validate_rtcp_parameters(rtcp: RtcpParameters) -> None:
    """Validate RTCP parameters; reduced size defaults to true."""
    if rtcp.reduced_size is None:
        rtcp.reduced_size = True


def validate_sctp_capabilities(caps: Any) -> None:
    """Validate SCTP capabilities; the number of streams is mandatory."""
    num_streams = getattr(caps, "num_streams", None)
    if num_streams is None or (not num_streams.os and not num_streams.mis):
        raise TypeError("missing caps.numStreams")
    validate_num_sctp_streams(num_streams)


def validate_num_sctp_streams(num_streams: Any) -> None:
    """Validate the numbers of outgoing and incoming SCTP streams."""
    if not num_streams.os:
        raise TypeError("missing numStreams.OS")
    if not num_streams.mis:
        raise TypeError("missing numStreams.MIS")


def validate_sctp_parameters(params: Any) -> None:
    """Validate SCTP parameters; every field is mandatory."""
    if not params.port:
        raise TypeError("missing params.port")
    if not params.os:
        raise TypeError("missing params.OS")
    if not params.mis:
        raise TypeError("missing params.MIS")
    if not params.max_message_size:
        raise TypeError("missing params.maxMessageSize")


def validate_sctp_stream_parameters(params: Any) -> None:
    """Validate SCTP stream parameters, deriving ``ordered`` when it is unset."""
    if params is None:
        raise TypeError("params is missing")

    ordered_given = params.ordered is not None
    if not ordered_given:
        params.ordered = True

    partial = bool(params.max_packet_life_time) or bool(params.max_retransmits)

    if params.max_packet_life_time and params.max_retransmits:
        raise TypeError("cannot provide both maxPacketLifeTime and maxRetransmits")

    if ordered_given and params.ordered and partial:
        raise TypeError("cannot be ordered with maxPacketLifeTime or maxRetransmits")
    if not ordered_given and partial:
        params.ordered = False