"""Unit tests for the echo responder."""

import json
import logging

import pytest

import protocol
import server


class SteppingClock:
    """Returns start, start+1, start+2, ... on successive calls."""

    def __init__(self, start: int) -> None:
        self.value = start - 1

    def __call__(self) -> int:
        self.value += 1
        return self.value


@pytest.mark.unit
class TestRespond:
    """Tests for building pong replies."""

    def test_ping_answered(self) -> None:
        """Test the pong copies clientSentAt and stamps receive then send time."""
        raw = protocol.encode(protocol.Probe(12, 1_700_000_000_000))
        reply = server.respond(raw, clock=SteppingClock(1_700_000_000_050))
        assert json.loads(reply) == {
            "type": "pong",
            "sequenceNumber": 12,
            "clientSentAt": 1_700_000_000_000,
            "serverReceivedAt": 1_700_000_000_050,
            "serverSentAt": 1_700_000_000_051,
        }

    def test_client_timestamp_verbatim(self) -> None:
        """Test an arbitrary client timestamp is returned unchanged."""
        raw = '{"type":"ping","sequenceNumber":1,"clientSentAt":-5}'
        echo = protocol.decode(server.respond(raw))
        assert echo.client_sent_at == -5

    def test_stateless_repeat(self) -> None:
        """Test the same probe is answered every time it arrives."""
        raw = protocol.encode(protocol.Probe(3, 100))
        assert server.respond(raw) is not None
        assert server.respond(raw) is not None

    def test_malformed_dropped(self, caplog) -> None:
        with caplog.at_level(logging.WARNING):
            assert server.respond("garbage") is None
        assert "Dropping malformed message" in caplog.text

    def test_unknown_type_ignored(self, caplog) -> None:
        with caplog.at_level(logging.INFO):
            assert server.respond('{"type":"hello"}', log_prefix="[peer]") is None
        assert "[peer] Ignoring message" in caplog.text

    def test_pong_from_client_ignored(self) -> None:
        raw = protocol.encode(protocol.Echo(1, 2, 3, 4))
        assert server.respond(raw) is None


@pytest.mark.unit
class TestParseArgs:
    """Tests for command-line parsing."""

    def test_defaults(self) -> None:
        args = server.parse_args([])
        assert args.host == "0.0.0.0"
        assert args.port == 4000

    def test_overrides(self) -> None:
        args = server.parse_args(["--host", "127.0.0.1", "--port", "9000"])
        assert args.host == "127.0.0.1"
        assert args.port == 9000


def fake_interfaces(monkeypatch, table: dict[str, list[str]]) -> None:
    """Replace netifaces lookups with a fixed interface -> IPv4 addresses table."""
    monkeypatch.setattr(server.netifaces, "interfaces", lambda: list(table))
    monkeypatch.setattr(
        server.netifaces,
        "ifaddresses",
        lambda name: {server.netifaces.AF_INET: [{"addr": ip} for ip in table[name]]} if table[name] else {},
    )


@pytest.mark.unit
class TestGetLocalIp:
    """Tests for choosing the advertised server address."""

    def test_skips_loopback_and_link_local(self, monkeypatch) -> None:
        """Test loopback and link-local addresses are passed over."""
        fake_interfaces(monkeypatch, {
            "lo": ["127.0.0.1"],
            "eth1": ["169.254.10.20"],
            "eth0": ["192.168.1.50"],
        })
        assert server.get_local_ip() == "192.168.1.50"

    def test_interface_without_ipv4(self, monkeypatch) -> None:
        fake_interfaces(monkeypatch, {"wg0": [], "eth0": ["10.0.0.7"]})
        assert server.get_local_ip() == "10.0.0.7"

    def test_falls_back_to_unspecified(self, monkeypatch, caplog) -> None:
        """Test only unusable addresses yield 0.0.0.0 with a warning."""
        fake_interfaces(monkeypatch, {"lo": ["127.0.0.1"], "eth0": ["169.254.1.1"]})
        with caplog.at_level(logging.WARNING):
            assert server.get_local_ip() == "0.0.0.0"
        assert "No reachable IPv4 address among 2 candidates" in caplog.text

    def test_enumeration_error(self, monkeypatch, caplog) -> None:
        def broken():
            raise OSError("no interfaces")

        monkeypatch.setattr(server.netifaces, "interfaces", broken)
        with caplog.at_level(logging.ERROR):
            assert server.get_local_ip() == "0.0.0.0"
        assert "Could not enumerate network interfaces" in caplog.text

    @pytest.mark.parametrize("ip, expected", [
        ("192.168.1.2", True),
        ("127.0.0.1", False),
        ("169.254.3.4", False),
        ("0.0.0.0", False),
        (None, False),
        ("not-an-ip", False),
    ])
    def test_is_reachable_address(self, ip, expected) -> None:
        assert server.is_reachable_address(ip) is expected
