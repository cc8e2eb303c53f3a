import hashlib
import hmac

from services.payments.signatures import (
    compute_payment_signature,
    compute_webhook_signature,
    verify_payment_signature,
    verify_webhook_signature,
)


SECRET = "sig_test_secret"


def _flip_first_hex_char(signature: str) -> str:
    replacement = "0" if signature[0] != "0" else "1"
    return replacement + signature[1:]


def test_payment_signature_is_hmac_of_order_pipe_payment():
    expected = hmac.new(SECRET.encode(), b"order_1|pay_1", hashlib.sha256).hexdigest()
    assert compute_payment_signature("order_1", "pay_1", SECRET) == expected
    assert verify_payment_signature("order_1", "pay_1", expected, SECRET)


def test_payment_signature_rejects_tampering():
    signature = compute_payment_signature("order_1", "pay_1", SECRET)
    assert not verify_payment_signature("order_1", "pay_1", _flip_first_hex_char(signature), SECRET)
    assert not verify_payment_signature("order_2", "pay_1", signature, SECRET)
    assert not verify_payment_signature("order_1", "pay_2", signature, SECRET)
    assert not verify_payment_signature("order_1", "pay_1", signature, "other_secret")
    assert not verify_payment_signature("order_1", "pay_1", signature.upper(), SECRET)


def test_payment_signature_rejects_missing_inputs():
    signature = compute_payment_signature("order_1", "pay_1", SECRET)
    assert not verify_payment_signature("order_1", "pay_1", None, SECRET)
    assert not verify_payment_signature("order_1", "pay_1", "", SECRET)
    assert not verify_payment_signature("order_1", "pay_1", signature, "")


def test_webhook_signature_covers_exact_body_bytes():
    body = b'{"event":"payment.captured","payload":{}}'
    signature = compute_webhook_signature(body, SECRET)
    assert verify_webhook_signature(body, signature, SECRET)

    # Re-serialized JSON with different whitespace is a different message.
    assert not verify_webhook_signature(b'{"event": "payment.captured", "payload": {}}', signature, SECRET)
    assert not verify_webhook_signature(body + b"\n", signature, SECRET)


def test_webhook_signature_rejects_single_bit_flip_in_body_or_signature():
    body = b'{"event":"payment.captured","amount":49900}'
    signature = compute_webhook_signature(body, SECRET)

    flipped_body = bytes([body[0] ^ 0x01]) + body[1:]
    assert not verify_webhook_signature(flipped_body, signature, SECRET)
    assert not verify_webhook_signature(body, _flip_first_hex_char(signature), SECRET)
    assert not verify_webhook_signature(body, signature + " ", SECRET)
    assert not verify_webhook_signature(body, None, SECRET)
    assert not verify_webhook_signature(body, signature, "")
