import pytest

from rtpsfu.payload_channel import InvalidStateError
from rtpsfu.producer import (
    EventEmitter,
    Producer,
    ProducerScore,
    ProducerTraceEventType,
    ProducerType,
    ProducerVideoOrientation,
)
from rtpsfu.rtp_parameters import MediaKind, RtpParameters


class FakeChannel:
    def __init__(self):
        self.requests = []
        self.subscribers = {}
        self.responses = {}
        self.failing = set()

    def request(self, method, internal, data=None):
        self.requests.append((method, dict(internal), data))
        if method in self.failing:
            raise RuntimeError("rejected")
        return self.responses.get(method)

    def subscribe(self, target_id, handler):
        self.subscribers[target_id] = handler

    def unsubscribe(self, target_id):
        self.subscribers.pop(target_id, None)

    def notify(self, event, internal, data, payload):
        self.requests.append((event, dict(internal), data, payload))


def make_producer(channel=None, payload_channel=None, paused=False, kind="video"):
    channel = channel or FakeChannel()
    payload_channel = payload_channel or FakeChannel()
    producer = Producer(
        {"routerId": "r1", "transportId": "t1", "producerId": "p1"},
        kind,
        RtpParameters(mid="VIDEO"),
        "simulcast",
        RtpParameters(),
        channel,
        payload_channel,
        app_data={"foo": 1, "bar": "2"},
        paused=paused,
    )
    return producer, channel, payload_channel


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, *args):
        self.calls.append(args)


def test_emitter_once_and_off():
    emitter = EventEmitter()
    rec = Recorder()
    always = Recorder()
    emitter.once("x", rec)
    emitter.on("x", always)
    emitter.emit("x", 1)
    emitter.emit("x", 2)
    assert rec.calls == [(1,)]
    assert always.calls == [(1,), (2,)]
    emitter.off("x", always)
    assert emitter.emit("x", 3) is False


def test_emitter_safe_emit_swallows_errors():
    emitter = EventEmitter()

    def boom():
        raise ValueError("bad")

    emitter.on("x", boom)
    assert emitter.safe_emit("x") is True
    with pytest.raises(ValueError):
        emitter.emit("x")
    emitter.remove_all_listeners()
    assert emitter.listener_count("x") == 0


def test_producer_properties():
    producer, channel, _ = make_producer()
    assert producer.id == "p1"
    assert producer.kind is MediaKind.VIDEO
    assert producer.type is ProducerType.SIMULCAST
    assert producer.rtp_parameters.mid == "VIDEO"
    assert producer.closed is False
    assert producer.paused is False
    assert producer.score == []
    assert producer.app_data == {"foo": 1, "bar": "2"}
    assert "p1" in channel.subscribers


def test_producer_emits_score():
    producer, channel, _ = make_producer()
    on_score = Recorder()
    producer.on("score", on_score)
    emit = channel.subscribers[producer.id]
    emit("score", b'[ { "ssrc": 11, "score": 10 } ]')
    emit("score", b'[ { "ssrc": 11, "score": 9 }, { "ssrc": 22, "score": 8 } ]')
    emit("score", b'[ { "ssrc": 11, "score": 9 }, { "ssrc": 22, "score": 9 } ]')
    assert len(on_score.calls) == 3
    assert producer.score == [ProducerScore(ssrc=11, score=9), ProducerScore(ssrc=22, score=9)]


def test_producer_video_orientation_and_trace():
    producer, channel, _ = make_producer()
    orientation = Recorder()
    trace = Recorder()
    producer.observer.on("videoorientationchange", orientation)
    producer.on("trace", trace)
    emit = channel.subscribers[producer.id]
    emit("videoorientationchange", '{"camera": true, "flip": false, "rotation": 90}')
    emit("trace", {"type": "pli", "timestamp": 5, "direction": "in", "info": {"ssrc": 1}})
    assert orientation.calls == [(ProducerVideoOrientation(camera=True, flip=False, rotation=90),)]
    assert trace.calls[0][0].type == "pli"
    assert trace.calls[0][0].info == {"ssrc": 1}


def test_pause_and_resume():
    producer, channel, _ = make_producer()
    on_pause = Recorder()
    on_resume = Recorder()
    producer.observer.on("pause", on_pause)
    producer.observer.on("resume", on_resume)
    producer.pause()
    assert producer.paused is True
    producer.pause()
    assert len(on_pause.calls) == 1
    producer.resume()
    assert producer.paused is False
    assert len(on_resume.calls) == 1
    methods = [r[0] for r in channel.requests]
    assert methods == ["producer.pause", "producer.pause", "producer.resume"]


def test_pause_failure_keeps_state():
    producer, channel, _ = make_producer()
    channel.failing.add("producer.pause")
    with pytest.raises(RuntimeError):
        producer.pause()
    assert producer.paused is False


def test_enable_trace_event_sends_types():
    producer, channel, _ = make_producer()
    producer.enable_trace_event(ProducerTraceEventType.RTP, "pli")
    producer.enable_trace_event()
    assert channel.requests[0] == (
        "producer.enableTraceEvent",
        {"routerId": "r1", "transportId": "t1", "producerId": "p1"},
        {"types": ["rtp", "pli"]},
    )
    assert channel.requests[1][2] == {"types": []}


def test_dump_and_get_stats():
    producer, channel, _ = make_producer()
    channel.responses["producer.dump"] = {"id": "p1", "paused": False}
    assert producer.dump() == {"id": "p1", "paused": False}
    assert producer.get_stats() == []


def test_close_succeeds():
    producer, channel, payload_channel = make_producer()
    payload_channel.subscribe("p1", lambda *a: None)
    on_close = Recorder()
    internal_close = Recorder()
    producer.observer.once("close", on_close)
    producer.on("@close", internal_close)
    producer.close()
    producer.close()
    assert len(on_close.calls) == 1
    assert len(internal_close.calls) == 1
    assert producer.closed is True
    assert "p1" not in channel.subscribers
    assert "p1" not in payload_channel.subscribers
    assert channel.requests[-1][0] == "transport.closeProducer"
    assert channel.requests[-1][2] == {"producerId": "p1"}


def test_close_survives_request_error():
    producer, channel, _ = make_producer()
    channel.failing.add("transport.closeProducer")
    producer.close()
    assert producer.closed is True


def test_methods_reject_if_closed():
    producer, _, _ = make_producer()
    producer.close()
    with pytest.raises(InvalidStateError):
        producer.dump()
    with pytest.raises(InvalidStateError):
        producer.get_stats()
    with pytest.raises(InvalidStateError):
        producer.pause()
    with pytest.raises(InvalidStateError):
        producer.resume()


def test_emits_transportclose():
    producer, channel, _ = make_producer()
    on_observer_close = Recorder()
    on_transport_close = Recorder()
    producer.observer.once("close", on_observer_close)
    producer.on("transportclose", on_transport_close)
    producer.transport_closed()
    assert len(on_transport_close.calls) == 1
    assert len(on_observer_close.calls) == 1
    assert producer.closed is True
    assert all(r[0] != "transport.closeProducer" for r in channel.requests)


def test_send_uses_payload_channel():
    producer, _, payload_channel = make_producer()
    producer.send(b"\x80\x60")
    event, internal, data, payload = payload_channel.requests[0]
    assert event == "producer.send"
    assert internal["producerId"] == "p1"
    assert data == ""
    assert payload == b"\x80\x60"