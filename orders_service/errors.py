from typing import Optional


class OrderServiceError(Exception):
    """Base error. Subclasses carry the HTTP status they are rendered with."""

    status_code = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message}
        if self.detail:
            body["message"] = self.detail
        return body


class InvalidRequest(OrderServiceError):
    status_code = 400


class InvalidSignature(OrderServiceError):
    status_code = 400


class WebhookSignatureError(InvalidSignature):
    status_code = 401


class OrderNotFound(OrderServiceError):
    status_code = 404

    def __init__(self, order_id: str):
        super().__init__("Order not found", detail=f"No order with id {order_id}")
        self.order_id = order_id


class InvalidTransition(OrderServiceError):
    status_code = 409


class DuplicateOrderNumber(OrderServiceError):
    status_code = 500


class PersistenceError(OrderServiceError):
    status_code = 500


class OrderNumberTaken(PersistenceError):
    """Unique violation on orders.order_number."""


class DuplicatePayment(PersistenceError):
    """Unique violation on orders.payment_id."""


class ConfigurationError(OrderServiceError):
    status_code = 500


class GatewayError(OrderServiceError):
    status_code = 502

    def __init__(self, message: str, detail: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, detail=detail)
        if status_code is not None:
            self.status_code = status_code
