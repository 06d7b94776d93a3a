"""Razorpay signature checks.

Checkout callbacks are signed over ``"<order_id>|<payment_id>"`` with the API
key secret; webhooks are signed over the raw request body with the webhook
secret. The digest comparison is left to the Razorpay SDK.
"""
from razorpay.errors import SignatureVerificationError
from razorpay.utility.utility import Utility

from orders_service.errors import InvalidRequest

# lowercase hex HMAC-SHA256
SIGNATURE_LENGTH = 64

_utility = Utility()


def _require(name: str, value) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequest(f"{name} is required and must be a non-empty string")


def _verify(message: str, signature: str, secret: str) -> bool:
    if len(signature) != SIGNATURE_LENGTH:
        return False
    try:
        return bool(_utility.verify_signature(message, signature, secret))
    except SignatureVerificationError:
        return False


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    _require("razorpay_order_id", order_id)
    _require("razorpay_payment_id", payment_id)
    _require("razorpay_signature", signature)
    _require("secret", secret)
    return _verify(f"{order_id}|{payment_id}", signature, secret)


def verify_webhook_signature(body, signature: str, secret: str) -> bool:
    """Check a webhook signature against the body exactly as received.

    The body must not be parsed and re-serialised first; any change in
    whitespace or key order breaks the digest.
    """
    _require("signature", signature)
    _require("secret", secret)
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            return False
    return _verify(body, signature, secret)
