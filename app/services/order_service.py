"""
Order lookups for the return-OTP flow.
All checks happen before otp_service is touched, so a caller that cannot
return an order never gets a code issued or an attempt recorded.
"""
import uuid
from sqlalchemy.orm import Session

from app.models.order import Order
from app.core.exceptions import BadRequestException, ForbiddenException, NotFoundException


def get_returnable_order(db: Session, order_id: uuid.UUID, user_id: str) -> Order:
    """
    Returns the order if `user_id` may request a return for it.

    Order of checks:
    1. Order exists                       (404)
    2. Order belongs to the caller        (403)
    3. Order status is "delivered"        (400)
    4. No return recorded yet             (400)
    5. Order has a customer email to send the code to (400)
    """
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundException("Order")

    if str(order.user_id) != str(user_id):
        raise ForbiddenException()

    if (order.status or "").lower() != "delivered":
        raise BadRequestException("Order is not delivered")

    if order.return_status:
        raise BadRequestException("Return already requested")

    if not customer_email(order):
        raise BadRequestException("Missing customer email")

    return order


def customer_email(order: Order) -> str:
    return (order.customer_email or "").strip().lower()


def return_scope_key(user_id: str, order_id: uuid.UUID) -> str:
    """Scope for order-return codes: one active code per (user, order)."""
    return f"{user_id}:{order_id}"
