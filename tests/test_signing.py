from __future__ import annotations

import hashlib
import hmac
import json

from webhook_delivery.services.signing import (
    build_headers,
    encode_body,
    sign_payload,
    signed_headers,
    verify_signature,
)

from tests.utils import BASE_TIME, make_config


def test_signature_matches_manual_hmac():
    """The signature is sha256= plus the HMAC hex digest."""
    body = b'{"event":"pipeline.completed"}'
    expected = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    assert sign_payload(body, "s3cret") == f"sha256={expected}"


def test_str_and_bytes_bodies_sign_identically():
    """str and bytes bodies produce the same signature."""
    assert sign_payload("hello", "k") == sign_payload(b"hello", "k")


def test_verify_signature_rejects_tampered_body():
    """Verification fails for a modified body."""
    signature = sign_payload(b"original", "k")
    assert verify_signature(b"original", "k", signature)
    assert not verify_signature(b"tampered", "k", signature)


def test_encode_body_is_key_order_independent():
    """Key order does not change the encoded body."""
    a = encode_body({"b": 1, "a": {"y": 2, "x": 1}})
    b = encode_body({"a": {"x": 1, "y": 2}, "b": 1})
    assert a == b
    assert json.loads(a) == {"a": {"x": 1, "y": 2}, "b": 1}


def test_encode_body_passes_raw_strings_through():
    """str and bytes payloads are sent as is."""
    assert encode_body("raw text") == b"raw text"
    assert encode_body(b"\x00bytes") == b"\x00bytes"


def test_build_headers_includes_identification_headers():
    """Every request carries user agent, webhook id and timestamp."""
    headers = build_headers(make_config(), now=BASE_TIME)
    assert headers["User-Agent"] == "Webhook-Delivery/1.0"
    assert headers["X-Webhook-ID"] == "wh_orders"
    assert headers["X-Webhook-Timestamp"] == "2024-01-01T12:00:00+00:00"


def test_build_headers_later_sources_override_earlier():
    """Config headers override defaults, extra headers override both."""
    config = make_config(headers={"User-Agent": "custom", "X-Team": "data"})
    headers = build_headers(config, {"X-Team": "ops", "X-Extra": "1"})
    assert headers["User-Agent"] == "custom"
    assert headers["X-Team"] == "ops"
    assert headers["X-Extra"] == "1"


def test_signed_headers_omit_signature_without_secret():
    """No secret means no signature header."""
    headers = signed_headers(make_config(), {"a": 1})
    assert "X-Signature" not in headers


def test_signed_headers_use_configured_header_name():
    """The signature goes under the configured header name."""
    payload = {"runId": "r1"}
    config = make_config(secret="topsecret", signature_header="X-Hub-Signature-256")
    headers = signed_headers(config, payload)
    assert headers["X-Hub-Signature-256"] == sign_payload(encode_body(payload), "topsecret")
    assert "X-Signature" not in headers
