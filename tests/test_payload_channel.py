import json
import threading

import pytest

from rtpsfu.payload_channel import (
    NS_PAYLOAD_MAX_LEN,
    InvalidStateError,
    PayloadChannel,
)


class FakeCodec:
    def __init__(self, reads=()):
        self.written = []
        self.reads = list(reads)
        self.close_count = 0
        self.closed_event = threading.Event()
        self.on_write = None

    def write_payload(self, data):
        self.written.append(bytes(data))
        if self.on_write is not None:
            self.on_write(bytes(data))

    def read_payload(self):
        if self.reads:
            return self.reads.pop(0)
        raise EOFError("end of stream")

    def close(self):
        self.close_count += 1
        self.closed_event.set()


class Internal:
    def __init__(self, producer_id):
        self.producer_id = producer_id

    def to_dict(self):
        return {"producerId": self.producer_id}

    def handler_id(self, name):
        return self.producer_id


def responder(channel, reply):
    def on_write(data):
        try:
            msg = json.loads(data)
        except ValueError:
            msg = {"id": int(data.split(b":")[1])}
        if isinstance(msg, dict) and "id" in msg:
            channel.process_payload(json.dumps(dict(reply, id=msg["id"])).encode())

    return on_write


def test_notify_json_form_with_payload():
    codec = FakeCodec()
    channel = PayloadChannel(codec)
    channel.notify("producer.send", {"producerId": "p1"}, "", b"\x80\x00")
    assert json.loads(codec.written[0]) == {
        "event": "producer.send",
        "internal": {"producerId": "p1"},
        "data": {"ppid": ""},
    }
    assert codec.written[1] == b"\x80\x00"


def test_notify_without_payload_writes_one_frame():
    codec = FakeCodec()
    PayloadChannel(codec).notify("producer.send", {}, "", b"")
    assert len(codec.written) == 1


def test_notify_handler_id_form():
    codec = FakeCodec()
    channel = PayloadChannel(codec, use_handler_id=True)
    channel.notify("producer.send", Internal("p1"), "51", b"rtp")
    assert codec.written == [b"n:producer.send:p1:51", b"rtp"]


def test_notify_when_closed_raises():
    codec = FakeCodec()
    channel = PayloadChannel(codec)
    channel.close()
    with pytest.raises(InvalidStateError):
        channel.notify("producer.send", {}, "", b"x")
    assert codec.written == []


def test_notify_payload_too_big():
    codec = FakeCodec()
    channel = PayloadChannel(codec)
    with pytest.raises(ValueError, match="payload too big"):
        channel.notify("producer.send", {}, "", b"x" * (NS_PAYLOAD_MAX_LEN + 1))
    assert codec.written == []


def test_request_ids_increase():
    codec = FakeCodec()
    channel = PayloadChannel(codec)
    codec.on_write = responder(channel, {"accepted": True})
    channel.request("a", {}, "")
    channel.request("b", {}, "")
    ids = [json.loads(frame)["id"] for frame in codec.written]
    assert ids[1] == ids[0] + 1


def test_request_handler_id_form():
    codec = FakeCodec()
    channel = PayloadChannel(codec, use_handler_id=True)
    codec.on_write = responder(channel, {"accepted": True, "data": None})
    assert channel.request("producer.dump", Internal("p1"), "") is None
    assert codec.written[0].startswith(b"r:")
    assert codec.written[0].endswith(b":producer.dump:p1:")


def test_request_rejected_with_type_error():
    codec = FakeCodec()
    channel = PayloadChannel(codec)
    codec.on_write = responder(channel, {"error": "TypeError", "reason": "bad ppid"})
    with pytest.raises(TypeError, match="bad ppid"):
        channel.request("dataConsumer.send", {}, "")


def test_request_rejected_with_other_error():
    codec = FakeCodec()
    channel = PayloadChannel(codec)
    codec.on_write = responder(channel, {"error": "Error", "reason": "boom"})
    with pytest.raises(RuntimeError, match="boom"):
        channel.request("dataConsumer.send", {}, "")


def test_request_timeout():
    codec = FakeCodec()
    channel = PayloadChannel(codec, timeout=0.05)
    with pytest.raises(TimeoutError, match="response timeout"):
        channel.request("producer.dump", {}, "")


def test_request_when_closed():
    channel = PayloadChannel(FakeCodec())
    channel.close()
    with pytest.raises(InvalidStateError):
        channel.request("producer.dump", {}, "")


def test_close_fails_pending_request():
    codec = FakeCodec()
    channel = PayloadChannel(codec)
    codec.on_write = lambda data: channel.close()
    with pytest.raises(InvalidStateError, match="closed"):
        channel.request("producer.dump", {}, "")
    assert channel.closed() is True


def test_close_is_idempotent():
    codec = FakeCodec()
    channel = PayloadChannel(codec)
    channel.close()
    channel.close()
    assert codec.close_count == 1


def test_notification_delivered_with_following_payload():
    channel = PayloadChannel(FakeCodec())
    received = []
    channel.subscribe("dc1", lambda event, data, payload: received.append((event, data, payload)))
    channel.process_payload(
        json.dumps({"targetId": "dc1", "event": "message", "data": {"ppid": 51}}).encode()
    )
    channel.process_payload(b"hello")
    assert received == [("message", {"ppid": 51}, b"hello")]


def test_unsubscribed_notification_is_dropped():
    channel = PayloadChannel(FakeCodec())
    received = []
    channel.subscribe("dc1", lambda *args: received.append(args))
    channel.unsubscribe("dc1")
    channel.process_payload(json.dumps({"targetId": "dc1", "event": "message"}).encode())
    channel.process_payload(b"hello")
    assert received == []


def test_malformed_and_unknown_messages_are_ignored():
    channel = PayloadChannel(FakeCodec())
    channel.process_payload(b"not json")
    channel.process_payload(json.dumps({"id": 12345, "accepted": True}).encode())
    channel.process_payload(json.dumps({"foo": "bar"}).encode())
    assert channel.closed() is False


def test_read_loop_dispatches_and_closes_at_end():
    notification = json.dumps({"targetId": "dc1", "event": "message", "data": {}}).encode()
    codec = FakeCodec(reads=[notification, b"payload"])
    channel = PayloadChannel(codec)
    received = []
    channel.subscribe("dc1", lambda event, data, payload: received.append(payload))
    channel.start()
    assert codec.closed_event.wait(2.0)
    assert received == [b"payload"]
    assert channel.closed() is True