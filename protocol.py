"""Wire format for probe/echo messages.

Messages are JSON objects sent as text frames:
  ping: {"type": "ping", "sequenceNumber": int, "clientSentAt": int}
  pong: {"type": "pong", "sequenceNumber": int, "clientSentAt": int,
         "serverReceivedAt": int, "serverSentAt": int}

All timestamps are integer milliseconds since the epoch.
"""

import json
import time
from dataclasses import dataclass

PING_TYPE = "ping"
PONG_TYPE = "pong"


class ProtocolError(Exception):
    """Raised when an incoming message cannot be decoded."""

    pass


class UnknownMessageError(ProtocolError):
    """Raised when a well-formed message carries an unrecognised type."""

    def __init__(self, msg_type):
        super().__init__(f"Unknown message type: {msg_type!r}")
        self.msg_type = msg_type


def now_ms() -> int:
    """Current wall-clock time in integer epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Probe:
    sequence_number: int
    client_sent_at: int

    def to_dict(self) -> dict:
        return {
            "type": PING_TYPE,
            "sequenceNumber": self.sequence_number,
            "clientSentAt": self.client_sent_at,
        }


@dataclass(frozen=True)
class Echo:
    sequence_number: int
    client_sent_at: int
    server_received_at: int
    server_sent_at: int

    def to_dict(self) -> dict:
        return {
            "type": PONG_TYPE,
            "sequenceNumber": self.sequence_number,
            "clientSentAt": self.client_sent_at,
            "serverReceivedAt": self.server_received_at,
            "serverSentAt": self.server_sent_at,
        }


def make_echo(probe: Probe, received_at: int, sent_at: int) -> Echo:
    """Answer a probe, copying its client timestamp verbatim."""
    return Echo(
        sequence_number=probe.sequence_number,
        client_sent_at=probe.client_sent_at,
        server_received_at=received_at,
        server_sent_at=sent_at,
    )


def encode(message: Probe | Echo) -> str:
    return json.dumps(message.to_dict(), separators=(",", ":"))


def _int_field(payload: dict, name: str) -> int:
    value = payload.get(name)
    # bool is an int subclass but never a valid field value
    if not isinstance(value, int) or isinstance(value, bool):
        raise ProtocolError(f"Field '{name}' must be an integer, got {value!r}")
    return value


def decode(raw: str | bytes) -> Probe | Echo:
    """Decode a text frame into a Probe or an Echo.

    Raises:
        UnknownMessageError: The JSON object has a type other than ping/pong.
        ProtocolError: The frame is not valid JSON, not an object, or has
            missing or mistyped fields.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Message is not valid UTF-8: {e}") from e

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Could not parse message JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ProtocolError(f"Message must be a JSON object, got {type(payload).__name__}")

    msg_type = payload.get("type")
    if msg_type == PING_TYPE:
        return Probe(
            sequence_number=_int_field(payload, "sequenceNumber"),
            client_sent_at=_int_field(payload, "clientSentAt"),
        )
    if msg_type == PONG_TYPE:
        return Echo(
            sequence_number=_int_field(payload, "sequenceNumber"),
            client_sent_at=_int_field(payload, "clientSentAt"),
            server_received_at=_int_field(payload, "serverReceivedAt"),
            server_sent_at=_int_field(payload, "serverSentAt"),
        )
    raise UnknownMessageError(msg_type)
