from __future__ import annotations

import re

import pytest

from common.crypto import (
    IV_LENGTH,
    KEY_LENGTH,
    SALT_LENGTH,
    decode_payload,
    derive_key,
    generate_project_id,
    open_envelope,
    pack_payload,
    seal,
    unpack_payload,
)
from common.errors import AuthenticationError, FormatError


SALT = bytes(range(SALT_LENGTH))


def _flip_hex_byte(field: str, index: int = 0) -> str:
    raw = bytearray(bytes.fromhex(field))
    raw[index] ^= 0x01
    return raw.hex()


@pytest.mark.parametrize(
    "plaintext",
    [b"", b"A=1\nB=2\n", "PASSWORD=héllo wörld $HOME\n".encode("utf-8"), bytes(range(256))],
)
def test_seal_open_roundtrip(plaintext: bytes):
    dk = derive_key("correct horse battery", SALT)
    assert open_envelope(seal(plaintext, dk.key), dk.key) == plaintext


def test_seal_accepts_text():
    dk = derive_key("correct horse battery", SALT)
    assert open_envelope(seal("A=1", dk.key), dk.key) == b"A=1"


def test_derive_is_deterministic_for_same_salt():
    a = derive_key("correct horse battery", SALT)
    b = derive_key("correct horse battery", SALT)
    assert a.key == b.key
    assert len(a.key) == KEY_LENGTH
    assert a.salt == SALT


def test_derive_without_salt_uses_fresh_random_salt():
    a = derive_key("correct horse battery")
    b = derive_key("correct horse battery")
    assert len(a.salt) == SALT_LENGTH
    assert a.salt != b.salt
    assert a.key != b.key


def test_derived_key_repr_hides_key_material():
    dk = derive_key("correct horse battery", SALT)
    assert dk.key.hex() not in repr(dk)


def test_seal_is_not_deterministic():
    dk = derive_key("correct horse battery", SALT)
    first = seal(b"A=1", dk.key)
    second = seal(b"A=1", dk.key)
    assert first != second
    assert first.split(":")[0] != second.split(":")[0]
    assert len(bytes.fromhex(first.split(":")[0])) == IV_LENGTH


def test_tampered_ciphertext_fails_authentication():
    dk = derive_key("correct horse battery", SALT)
    iv, tag, ct = seal(b"SECRET=value", dk.key).split(":")
    for i in range(len(bytes.fromhex(ct))):
        with pytest.raises(AuthenticationError):
            open_envelope(":".join((iv, tag, _flip_hex_byte(ct, i))), dk.key)


def test_tampered_tag_fails_authentication():
    dk = derive_key("correct horse battery", SALT)
    iv, tag, ct = seal(b"SECRET=value", dk.key).split(":")
    with pytest.raises(AuthenticationError):
        open_envelope(":".join((iv, _flip_hex_byte(tag, 15), ct)), dk.key)


def test_wrong_passphrase_fails_authentication():
    good = derive_key("correct horse battery", SALT)
    bad = derive_key("incorrect horse battery", SALT)
    with pytest.raises(AuthenticationError):
        open_envelope(seal(b"A=1", good.key), bad.key)


def test_key_of_wrong_length_is_an_authentication_failure():
    dk = derive_key("correct horse battery", SALT)
    with pytest.raises(AuthenticationError):
        open_envelope(seal(b"A=1", dk.key), b"short")


@pytest.mark.parametrize(
    "envelope",
    ["", "abc", "00:11", "zz:" + "00" * 16 + ":00", "00" * 12 + "::00", "00" * 11 + ":" + "00" * 16 + ":00"],
)
def test_malformed_envelope_is_format_error(envelope: str):
    dk = derive_key("correct horse battery", SALT)
    with pytest.raises(FormatError):
        open_envelope(envelope, dk.key)


def test_pack_and_unpack_payload():
    dk = derive_key("correct horse battery", SALT)
    envelope = seal(b"A=1", dk.key)
    payload = pack_payload(dk.salt, envelope)
    assert payload.startswith(SALT.hex() + ":")

    salt, env = unpack_payload(payload.encode("utf-8"))
    assert salt == SALT
    assert env == envelope


@pytest.mark.parametrize("payload", ["", "nosalt", ":00:11:22", "xyz:00:11:22"])
def test_unpack_rejects_malformed_payload(payload: str):
    with pytest.raises(FormatError):
        unpack_payload(payload)


def test_generate_project_id_shape():
    pid = generate_project_id()
    assert re.fullmatch(r"env_[0-9a-z]+_[0-9a-f]{16}", pid)
    assert pid != generate_project_id()


def test_decode_payload_rejects_non_utf8():
    assert decode_payload(b"00:aa") == "00:aa"
    with pytest.raises(FormatError):
        decode_payload(b"\xff\xfe\x00garbage")
    with pytest.raises(FormatError):
        open_envelope(b"\xff:\xfe:\x00", b"\x00" * KEY_LENGTH)
