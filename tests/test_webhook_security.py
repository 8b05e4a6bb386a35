"""
Tests for MercadoPago webhook signature verification
"""

import time

import pytest

from app.webhook_security import (
    WebhookSignatureError,
    build_manifest,
    compute_hmac_sha256,
    parse_signature_header,
    verify_mercadopago_signature,
    verify_timestamp,
)

SECRET = "whsec-test"


def sign(data_id, request_id, ts, secret=SECRET):
    manifest = build_manifest(data_id, request_id, ts)
    return f"ts={ts},v1={compute_hmac_sha256(secret, manifest.encode())}"


class TestManifest:
    def test_full_manifest(self):
        assert build_manifest("ABC123", "req-1", "1700000000") == (
            "id:abc123;request-id:req-1;ts:1700000000;"
        )

    def test_request_id_omitted_when_absent(self):
        assert build_manifest("42", None, "1700000000") == "id:42;ts:1700000000;"

    def test_parse_header(self):
        assert parse_signature_header("ts=1700000000, v1=abcdef") == ("1700000000", "abcdef")
        assert parse_signature_header("garbage") == (None, None)


class TestTimestamp:
    def test_current_seconds(self):
        assert verify_timestamp(str(int(time.time())))

    def test_current_milliseconds(self):
        assert verify_timestamp(str(int(time.time() * 1000)))

    def test_old_timestamp_rejected(self):
        assert not verify_timestamp(str(int(time.time()) - 3600))

    @pytest.mark.parametrize("value", [None, "", "soon"])
    def test_invalid_values(self, value):
        assert not verify_timestamp(value)


class TestVerifySignature:
    def test_valid_signature(self):
        ts = str(int(time.time()))
        verify_mercadopago_signature(sign("123", "req-1", ts), "req-1", "123", SECRET)

    def test_wrong_secret(self):
        ts = str(int(time.time()))
        with pytest.raises(WebhookSignatureError):
            verify_mercadopago_signature(
                sign("123", "req-1", ts, secret="other"), "req-1", "123", SECRET
            )

    def test_signature_bound_to_data_id(self):
        ts = str(int(time.time()))
        with pytest.raises(WebhookSignatureError):
            verify_mercadopago_signature(sign("123", "req-1", ts), "req-1", "999", SECRET)

    def test_expired_signature(self):
        ts = str(int(time.time()) - 3600)
        with pytest.raises(WebhookSignatureError):
            verify_mercadopago_signature(sign("123", None, ts), None, "123", SECRET)

    @pytest.mark.parametrize("header", [None, "", "v1=abc", "ts=1700000000"])
    def test_missing_or_malformed_header(self, header):
        with pytest.raises(WebhookSignatureError):
            verify_mercadopago_signature(header, "req-1", "123", SECRET)
