import hashlib
import hmac

import pytest

from qms_webhooks.services.signing import sign_payload, verify_signature

SECRET = "a" * 64


def test_sign_is_hex_hmac_sha256_of_exact_bytes():
    body = b'{"event":"ncr.created","timestamp":"2026-03-02T09:00:00.000Z","data":{"id":42}}'
    expected = hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()
    assert sign_payload(body, SECRET) == expected
    assert len(sign_payload(body, SECRET)) == 64


@pytest.mark.parametrize("body", [b"", b"{}", "{\"name\":\"Müller\"}".encode("utf-8"), bytes(range(256))])
def test_verify_accepts_own_signature(body):
    assert verify_signature(body, sign_payload(body, SECRET), SECRET) is True


def test_verify_accepts_bytes_candidate():
    body = b"payload"
    assert verify_signature(body, sign_payload(body, SECRET).encode("ascii"), SECRET) is True


def test_verify_rejects_other_secret_and_tampered_body():
    sig = sign_payload(b"payload", SECRET)
    assert verify_signature(b"payload", sig, "b" * 64) is False
    assert verify_signature(b"payload!", sig, SECRET) is False


@pytest.mark.parametrize("candidate", ["", "abc", "0" * 63, "0" * 65, "0" * 128, b"\x00" * 10])
def test_verify_length_mismatch_returns_false(candidate):
    assert verify_signature(b"payload", candidate, SECRET) is False


def test_verify_non_ascii_candidate_returns_false():
    assert verify_signature(b"payload", "é" * 64, SECRET) is False


def test_single_byte_difference_is_rejected():
    sig = sign_payload(b"payload", SECRET)
    flipped = sig[:-1] + ("0" if sig[-1] != "0" else "1")
    assert verify_signature(b"payload", flipped, SECRET) is False
