# rtpsfu

`rtpsfu` holds the signalling-side logic of a selective forwarding unit (SFU)
for RTP media. It works out which codecs, header extensions and encodings flow
between a producer, the router and its consumers. It also provides the control
objects that exchange requests and notifications with a media worker over a
channel that you supply.

It has no dependencies beyond the Python standard library and needs Python 3.10
or later.

## Modules

### `rtpsfu.rtp_parameters`

Dataclasses for RTP capabilities and parameters:

- `RtpCapabilities`, `RtpCodecCapability`, `RtpHeaderExtension`
- `RtpParameters`, `RtpCodecParameters`, `RtpHeaderExtensionParameters`,
  `RtpEncodingParameters`, `RtpEncodingRtx`, `RtcpParameters`
- `RtcpFeedback`, `RtpCodecSpecificParameters`

There are two enums, `MediaKind` (`audio`, `video`) and
`RtpHeaderExtensionDirection`. `RtpCodecCapability.is_rtx()` and
`RtpCodecParameters.is_rtx()` report whether a codec is an RTX codec.

`RtpParameters.to_dict()` and `RtpParameters.from_dict()` convert to and from
the camel-case JSON shape. `RtpCodecSpecificParameters.to_dict()` and
`RtpCodecSpecificParameters.from_dict()` do the same using the hyphenated codec
parameter keys (`packetization-mode`, `profile-level-id`, `apt` and so on).
Parameters that are unset are left out.

### `rtpsfu.scalability_modes`

`parse_scalability_mode(text)` returns a frozen `ScalabilityMode` with
`spatial_layers`, `temporal_layers` and `ksvc`. Any string it does not
recognise gives one spatial and one temporal layer.

```python
from rtpsfu.scalability_modes import parse_scalability_mode

mode = parse_scalability_mode("L3T2_KEY")
assert (mode.spatial_layers, mode.temporal_layers, mode.ksvc) == (3, 2, True)
assert parse_scalability_mode("foo").spatial_layers == 1
```

### `rtpsfu.validation`

These validators check capabilities, parameters and SCTP settings. They raise
`TypeError` when a mandatory field is missing or invalid. Some of them also
fill in defaults:

- `validate_rtp_codec_capability()` sets the codec's `kind` from its MIME type.
  An audio codec with no channel count gets 1.
- `validate_rtp_header_extension()` sets the direction to `sendrecv` when it
  is unset.
- `validate_rtcp_parameters()` sets `reduced_size` to `True` when it is unset.
- `validate_sctp_stream_parameters()` sets `ordered` when it is unset. It
  rejects ordered streams that also set `max_packet_life_time` or
  `max_retransmits`.

The SCTP validators accept any object that has the attributes they read.

### `rtpsfu.ortc`

Codec matching and parameter negotiation:

- `generate_router_rtp_capabilities(media_codecs, supported_capabilities)`
  builds router capabilities from the wanted codecs and a supported-capabilities
  set that you provide. It assigns dynamic payload types and adds an RTX codec
  for every video codec.
- `get_producer_rtp_parameters_mapping(params, caps)` returns an `RtpMapping`,
  which holds `RtpMappingCodec` and `RtpMappingEncoding` entries.
- `get_consumable_rtp_parameters(kind, params, caps, rtp_mapping)`
- `can_consume(consumable_params, caps)`
- `get_consumer_rtp_parameters(consumable_params, caps, pipe=False)` trims the
  RTCP feedback to transport-cc or REMB, depending on which header extensions
  are negotiated.
- `get_pipe_consumer_rtp_parameters(consumable_params, enable_rtx=False)`
- `find_matched_codec()` and `match_codecs()`. With `strict=True` they compare
  H264 packetization mode and profile-level-id form, and the VP9 profile id.

When no codec matches, these functions raise `UnsupportedError`.

```python
from rtpsfu.ortc import can_consume
from rtpsfu.rtp_parameters import (
    RtpCapabilities, RtpCodecCapability, RtpCodecParameters, RtpParameters,
)

caps = RtpCapabilities(codecs=[
    RtpCodecCapability(mime_type="audio/opus", clock_rate=48000, channels=2,
                       preferred_payload_type=100),
])
consumable = RtpParameters(codecs=[
    RtpCodecParameters(mime_type="audio/opus", payload_type=100,
                       clock_rate=48000, channels=2),
])
assert can_consume(consumable, caps)
```

### `rtpsfu.payload_channel`

`PayloadChannel(codec, use_handler_id=False, timeout=3.0)` sends requests and
notifications, and each message can carry a binary payload. It works over a
framing codec object that provides `write_payload()`, `read_payload()` and
`close()`.

- `start()` reads incoming frames in a background thread.
- `request()` waits for the matching response. It raises `TimeoutError` if no
  response arrives in time.
- `subscribe()` and `unsubscribe()` route notifications to handlers.
- `process_payload()` handles a single incoming frame.

Operations on a closed channel raise `InvalidStateError`.

### `rtpsfu.producer`

`EventEmitter` is a small synchronous emitter. It provides `on`, `once`, `off`,
`emit`, `safe_emit`, `remove_all_listeners` and `listener_count`.

`Producer` builds on it and represents a media source. Its read-only properties
are:

- `id`, `kind`, `type`
- `rtp_parameters`, `consumable_rtp_parameters`
- `paused`, `closed`
- `score`, `app_data`, `observer`

Its methods are:

- `close()`, `transport_closed()`
- `dump()`, `get_stats()`
- `pause()`, `resume()`
- `enable_trace_event()`
- `send()`
- `handle_notification()`, which handles the `score`,
  `videoorientationchange` and `trace` events from the worker.

`ProducerType`, `ProducerTraceEventType`, `ProducerScore`,
`ProducerVideoOrientation` and `ProducerTraceEventData` describe its data.

### `rtpsfu.rtp_observer`

`RtpObserver` is the base for audio-level and active-speaker observers. Its
methods are `pause()`, `resume()`, `add_producer()`, `remove_producer()`,
`close()` and `router_closed()`. It emits events on itself and on its
`observer`.

## What this package does not do

There is no worker process here, and no router, transport, consumer or data
channel objects. There is also no request channel for messages without a
payload, and no built-in table of supported codecs.

`Producer` and `RtpObserver` need a channel object from the caller, one that
provides `request`, `subscribe` and `unsubscribe`. `PayloadChannel` needs a
framing codec from the caller. `generate_router_rtp_capabilities()` needs the
supported capabilities passed in.

## Installing and testing

```
pip install .
pip install ".[test]"
pytest
```