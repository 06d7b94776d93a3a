from typing import Any, Dict, Optional

import razorpay
import structlog
from razorpay import errors as razorpay_errors
from requests.exceptions import RequestException

from orders_service.config import get_settings, mask_key
from orders_service.errors import GatewayError

log = structlog.get_logger(__name__)


def _client():
    settings = get_settings()
    key_id = settings.require("razorpay_key_id")
    key_secret = settings.require("razorpay_key_secret")
    log.debug("razorpay.client_init", key_id=mask_key(key_id))
    return razorpay.Client(auth=(key_id, key_secret))


def _call(action: str, fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except razorpay_errors.BadRequestError as exc:
        log.warning("razorpay.bad_request", action=action, error=str(exc))
        raise GatewayError(f"Failed to {action}", detail=str(exc), status_code=400)
    except (razorpay_errors.ServerError, razorpay_errors.GatewayError) as exc:
        log.error("razorpay.unavailable", action=action, error=str(exc))
        raise GatewayError(f"Failed to {action}", detail=str(exc))
    except RequestException as exc:
        log.error("razorpay.unreachable", action=action, error=str(exc))
        raise GatewayError(f"Failed to {action}", detail=str(exc))


def create_gateway_order(amount: int, currency: str, receipt: str, notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    client = _client()
    return _call(
        "create Razorpay order",
        client.order.create,
        data={"amount": amount, "currency": currency, "receipt": receipt, "notes": notes or {}},
    )


def refund_payment(payment_id: str, amount: Optional[int] = None) -> Dict[str, Any]:
    client = _client()
    data = {"amount": amount} if amount else {}
    return _call("refund Razorpay payment", client.payment.refund, payment_id, data)
