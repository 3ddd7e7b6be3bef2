from __future__ import annotations

import pytest

from pyovms._crypto import StreamCipher, compute_client_digest, derive_direction_keys, derive_session_key, hmac_md5
from pyovms.exceptions import OvmsCryptoError, OvmsHandshakeError, OvmsProtocolError
from pyovms.ingestion.protocol import parse_environment, parse_location, parse_status, split_message
from pyovms.transport.protocol import ProtocolSession, negotiate, parse_server_welcome

_WELCOME = "MP-S 0 SRVTOKEN1234567890ABCDEF OVMS-v3\r\n"
_CLIENT_TOKEN = "CLIENTTOKEN0123456789AB"

# Key schedule for secret "s3cret", server token "SRVTOKEN1234567890ABCDEF"
# and client token "CLIENTTOKEN0123456789AB".
_SESSION_KEY = "6679a8aac27abf251634d4d05f99bbd5"
_RX_KEY = "2dff4d3e25ce322d5390267712ba64a7"
_TX_KEY = "f030c3dd5172460782fd62e0d8c8dac7"
_CLIENT_DIGEST = "yArnSLC13mUahvQD3LRAQQ=="
# First keystream bytes after the 1024-byte discard.
_RX_KEYSTREAM = "a7c60cf96bfcd35871072a03b02788f9"
_TX_KEYSTREAM = "e45f2bffd788733855495ebfc60f1ee9"


def test_hmac_md5_rfc2104_vector() -> None:
    digest = hmac_md5(b"Jefe", b"what do ya want for nothing?")
    assert digest.hex() == "750c783e6ab0b503eaa86e310a5db738"


def test_stream_cipher_rfc6229_first_bytes_without_discard() -> None:
    cipher = StreamCipher(bytes.fromhex("0102030405"), discard=0)
    assert cipher.apply(b"\x00" * 16).hex() == "b2396305f03dc027ccc3524a0a1118a8"


def test_stream_cipher_discards_first_1024_bytes() -> None:
    # RFC 6229, 128-bit key 0x0102..10, keystream at offset 1024.
    cipher = StreamCipher(bytes(range(1, 17)))
    assert cipher.apply(b"\x00" * 16).hex() == "bdf0324e6083dcc6d3cedd3ca8c53c16"


def test_stream_cipher_is_stateful_and_symmetric() -> None:
    key = b"0123456789abcdef"
    sender, receiver = StreamCipher(key), StreamCipher(key)
    first = sender.encrypt(b"MP-0 A\r\n")
    second = sender.encrypt(b"MP-0 A\r\n")

    assert first != second
    assert receiver.decrypt(first) == b"MP-0 A\r\n"
    assert receiver.decrypt(second) == b"MP-0 A\r\n"


def test_stream_cipher_rejects_unsupported_key_size() -> None:
    with pytest.raises(OvmsCryptoError):
        StreamCipher(b"abc")


def test_key_schedule_golden_vector() -> None:
    session_key = derive_session_key("s3cret", "SRVTOKEN1234567890ABCDEF")
    assert session_key.hex() == _SESSION_KEY
    assert derive_session_key("other", "SRVTOKEN1234567890ABCDEF") != session_key

    rx_key, tx_key = derive_direction_keys(session_key)
    assert rx_key.hex() == _RX_KEY
    assert tx_key.hex() == _TX_KEY
    assert compute_client_digest(session_key, _CLIENT_TOKEN) == _CLIENT_DIGEST


def test_negotiate_golden_vector() -> None:
    result = negotiate("s3cret", _WELCOME, "CAR1", client_token=_CLIENT_TOKEN)

    assert result == negotiate("s3cret", _WELCOME, "CAR1", client_token=_CLIENT_TOKEN)
    assert result.session_key.hex() == _SESSION_KEY
    assert result.rx_key.hex() == _RX_KEY
    assert result.tx_key.hex() == _TX_KEY
    assert result.digest == _CLIENT_DIGEST
    assert result.reply == f"MP-A 0 {_CLIENT_TOKEN} {_CLIENT_DIGEST} CAR1\r\n".encode("ascii")

    assert StreamCipher(result.rx_key).apply(b"\x00" * 16).hex() == _RX_KEYSTREAM
    assert StreamCipher(result.tx_key).apply(b"\x00" * 16).hex() == _TX_KEYSTREAM


def test_encoded_line_matches_tx_keystream() -> None:
    result = negotiate("s3cret", _WELCOME, "CAR1", client_token=_CLIENT_TOKEN)
    session = ProtocolSession.from_handshake(result)
    keystream = bytes.fromhex(_TX_KEYSTREAM)

    wire = session.encode("MP-0 A")
    assert wire == bytes(a ^ b for a, b in zip(b"MP-0 A\r\n", keystream, strict=False))


def test_negotiate_generates_random_client_token() -> None:
    result = negotiate("s3cret", _WELCOME, "CAR1")
    assert len(result.client_token) == 22
    assert result.client_token.isalnum()


@pytest.mark.parametrize(
    "line",
    ["", "HELLO 0 TOKEN", "MP-S 0", "MP-S 1 TOKEN", "MP-A 0 TOKEN DIGEST CAR1", "MP-S 0 T\u00d6KEN123 x"],
)
def test_bad_welcome_is_rejected(line: str) -> None:
    with pytest.raises(OvmsHandshakeError):
        parse_server_welcome(line)


def test_session_reassembles_lines_across_chunks() -> None:
    result = negotiate("s3cret", _WELCOME, "CAR1", client_token="CLIENTTOKEN")
    client = ProtocolSession.from_handshake(result)
    peer = ProtocolSession(result.tx_key, result.rx_key)

    wire = peer.encode("MP-0 S80,K,230,16,charging") + peer.encode("MP-0 A")
    assert client.feed(wire[:10]) == []
    assert client.feed(wire[10:]) == ["MP-0 S80,K,230,16,charging", "MP-0 A"]

    assert peer.feed(client.encode("MP-0 a")) == ["MP-0 a"]


def test_split_message() -> None:
    message = split_message("MP-0 S80,K")
    assert message is not None
    assert message.code == "S"
    assert message.payload == "80,K"
    assert split_message("MP-0 ") is None
    assert split_message("garbage") is None


def test_parse_status_record() -> None:
    fields = dict(parse_status("80,K,230,16,charging,standard,250,220,90,45,12.5,21,30"))
    assert fields["v.b.soc"] == "80"
    assert fields["v.c.voltage"] == "230"
    assert fields["v.c.current"] == "16"
    assert fields["v.c.state"] == "charging"
    assert fields["v.b.range.ideal"] == "250"
    assert fields["v.b.range.est"] == "220"
    assert fields["v.c.kwh"] == "12.5"
    assert fields["v.b.temp"] == "21"
    assert fields["v.c.temp"] == "30"


def test_parse_status_converts_miles() -> None:
    fields = dict(parse_status("80,M,0,0,stopped,standard,100,50"))
    assert fields["v.b.range.ideal"] == "160.9"
    assert fields["v.b.range.est"] == "80.5"


def test_parse_location_record() -> None:
    fields = dict(parse_location("52.520008,13.404954,270,34,1,0,48,12.3,10234.5"))
    assert fields["v.p.latitude"] == "52.520008"
    assert fields["v.p.longitude"] == "13.404954"
    assert fields["v.p.speed"] == "48"
    assert fields["v.p.odometer"] == "10234.5"


def test_parse_environment_bitfields() -> None:
    # doors1: FL + charging + car on; doors2: trunk; lock status 4 = locked
    fields = dict(parse_environment(f"{0x01 | 0x10 | 0x80},{0x80},4,30,40,22,5.1,10234.5,0,3600,18"))
    assert fields["v.d.fl"] == "yes"
    assert fields["v.d.fr"] == "no"
    assert fields["v.c.charging"] == "yes"
    assert fields["v.e.on"] == "yes"
    assert fields["v.d.trunk"] == "yes"
    assert fields["v.d.hood"] == "no"
    assert fields["v.e.locked"] == "yes"
    assert fields["v.e.parktime"] == "3600"
    assert fields["v.e.temp"] == "18"


@pytest.mark.parametrize(
    ("parser", "payload"),
    [
        (parse_status, "80,K,230"),
        (parse_status, "abc,K,230,16,charging,standard,250,220"),
        (parse_location, "north,13.4,0,0,1,0,0,0"),
        (parse_location, "52.5,13.4"),
        (parse_environment, "x,y,4,30,40,22,5.1,10234.5,0,3600,18"),
        (parse_environment, "inf,0,4,20,30,25,0,1000,0,60,15"),
        (parse_location, "inf,13.4,0,0,1,0,0,0"),
    ],
)
def test_malformed_records_raise(parser, payload: str) -> None:
    with pytest.raises(OvmsProtocolError):
        parser(payload)
