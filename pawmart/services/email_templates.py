"""
Order email templates

Each notification kind maps to one builder returning the subject and
the body content; status-specific paragraphs are looked up from a
status -> builder table. `render` wraps the content in the Fun4Pet
layout. Every value that comes from users or the catalog is escaped.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from html import escape
from typing import Callable, Dict

from pawmart.core.config import settings
from pawmart.models.order import Order, OrderStatus, PaymentMethod, PaymentStatus


class NotificationKind(str, Enum):
    ORDER_PLACED = "order_placed"
    ORDER_STATUS = "order_status"
    PAYMENT_STATUS = "payment_status"
    ORDER_CANCELLED = "order_cancelled"


@dataclass
class EmailMessage:
    subject: str
    html: str


def _money(amount) -> str:
    return f"₹{amount:.2f}"


def _date(value: str) -> str:
    return datetime.fromisoformat(value).strftime("%d %b %Y")


def _info_box(*rows: str) -> str:
    body = "".join(f"<p>{row}</p>" for row in rows)
    return f'<div style="margin: 15px 0; padding: 10px; background-color: #f8f9fa; border-radius: 5px;">{body}</div>'


def _items_table(order: Order) -> str:
    rows = "".join(
        f"<tr><td>{escape(line.name)}"
        f"{' (' + escape(line.product_snapshot['variation_name']) + ')' if line.product_snapshot.get('variation_name') else ''}"
        f"</td><td>{line.quantity}</td><td>{_money(line.price)}</td><td>{_money(line.subtotal)}</td></tr>"
        for line in order.order_items
    )
    totals = order.totals
    return (
        '<table style="width: 100%; border-collapse: collapse;">'
        "<tr><th align=\"left\">Item</th><th>Qty</th><th>Price</th><th>Subtotal</th></tr>"
        f"{rows}"
        f"<tr><td colspan=\"3\">Items subtotal</td><td>{_money(totals.items_subtotal)}</td></tr>"
        f"<tr><td colspan=\"3\">Tax</td><td>{_money(totals.tax_amount)}</td></tr>"
        f"<tr><td colspan=\"3\">Shipping</td><td>{_money(totals.shipping_fee)}</td></tr>"
        f"<tr><td colspan=\"3\"><strong>Total</strong></td><td><strong>{_money(totals.total_amount)}</strong></td></tr>"
        "</table>"
    )


def _address_block(order: Order) -> str:
    address = order.shipping_address
    lines = [address.full_name, address.address_line1]
    if address.address_line2:
        lines.append(address.address_line2)
    lines.append(f"{address.city}, {address.state} {address.postal_code}")
    lines.append(address.country)
    if address.phone:
        lines.append(f"Phone: {address.phone}")
    return "<h3>Shipping Address</h3>" + "".join(f"<p>{escape(line)}</p>" for line in lines)


# ----------------------------------------------------------------------
# Status-specific paragraphs
# ----------------------------------------------------------------------

def _shipped_details(order: Order) -> str:
    rows = []
    if order.delivery_date:
        rows.append(f"<strong>Expected Delivery Date:</strong> {_date(order.delivery_date)}")
    rows.append(f"<strong>Tracking Number:</strong> {escape(order.tracking_number)}")
    return (
        _info_box(*rows)
        + f'<p>You can track your order on our <a href="{settings.FRONTEND_URL}/track-order" '
          f'style="color: #0066cc;">order tracking page</a>.</p>'
    )


def _delivered_details(order: Order) -> str:
    return (
        '<p style="color: #28a745; font-weight: bold;">Your order has been successfully delivered!</p>'
        "<p>We hope you're enjoying your purchase. If you have any questions, please don't hesitate to contact us.</p>"
    )


def _cancelled_details(order: Order) -> str:
    return (
        '<p style="color: #dc3545;">Your order has been cancelled.</p>'
        "<p>If this was unexpected or you'd like to reorder, please visit our store.</p>"
    )


def _paid_details(order: Order) -> str:
    return (
        '<p style="color: #28a745; font-weight: bold;">Thank you for your payment!</p>'
        "<p>Your order is now being processed. We'll notify you when it ships.</p>"
    )


def _payment_failed_details(order: Order) -> str:
    return (
        '<p style="color: #dc3545;">We couldn\'t process your payment.</p>'
        "<p>Please update your payment information to complete your order.</p>"
    )


def _refunded_details(order: Order) -> str:
    return (
        "<p>Your refund has been processed successfully.</p>"
        "<p>It may take 3-5 business days for the amount to reflect in your account.</p>"
    )


ORDER_STATUS_DETAILS: Dict[OrderStatus, Callable[[Order], str]] = {
    OrderStatus.SHIPPED: _shipped_details,
    OrderStatus.DELIVERED: _delivered_details,
    OrderStatus.CANCELLED: _cancelled_details,
}

PAYMENT_STATUS_DETAILS: Dict[PaymentStatus, Callable[[Order], str]] = {
    PaymentStatus.PAID: _paid_details,
    PaymentStatus.FAILED: _payment_failed_details,
    PaymentStatus.REFUNDED: _refunded_details,
}


# ----------------------------------------------------------------------
# Builders per notification kind
# ----------------------------------------------------------------------

def _order_placed(order: Order) -> EmailMessage:
    method = "Cash on Delivery" if order.payment_method == PaymentMethod.COD else "Online Payment"
    content = (
        "<p>Thank you for your order! Your order has been successfully placed.</p>"
        + _info_box(
            f"<strong>Order Number:</strong> #{escape(order.order_number)}",
            f"<strong>Order Date:</strong> {_date(order.created_at)}",
            f"<strong>Payment Method:</strong> {method}",
            f"<strong>Payment Status:</strong> {order.payment_status.value}",
            f"<strong>Order Total:</strong> {_money(order.total_amount)}",
            f"<strong>Tracking Number:</strong> {escape(order.tracking_number)}",
            "<strong>Estimated Delivery:</strong> 3-5 business days",
        )
        + _items_table(order)
        + _address_block(order)
    )
    return EmailMessage(
        subject=f"Your Fun4Pet Order #{order.order_number} has been placed",
        html=content,
    )


def _order_status(order: Order) -> EmailMessage:
    content = (
        f"<p>The status of your order <strong>#{escape(order.order_number)}</strong> "
        f"has been updated to <strong>{order.order_status.value}</strong>.</p>"
    )
    details = ORDER_STATUS_DETAILS.get(order.order_status)
    if details:
        content += details(order)
    return EmailMessage(
        subject=f"Your Order #{order.order_number} Status Update",
        html=content,
    )


def _payment_status(order: Order) -> EmailMessage:
    content = (
        f"<p>The payment status for your order <strong>#{escape(order.order_number)}</strong> "
        f"has been updated to <strong>{order.payment_status.value}</strong>.</p>"
        + _info_box(
            f"<strong>Order Total:</strong> {_money(order.total_amount)}",
            f"<strong>Payment Method:</strong> {order.payment_method.value}",
        )
    )
    details = PAYMENT_STATUS_DETAILS.get(order.payment_status)
    if details:
        content += details(order)
    return EmailMessage(
        subject=f"Payment Update for Order #{order.order_number}",
        html=content,
    )


def _order_cancelled(order: Order) -> EmailMessage:
    content = (
        f"<p>Your order <strong>#{escape(order.order_number)}</strong> has been cancelled.</p>"
    )
    if order.cancel_details:
        content += _info_box(f"<strong>Reason:</strong> {escape(order.cancel_details.reason.value)}")
    if order.payment_status == PaymentStatus.REFUNDED:
        content += _refunded_details(order)
    content += "<p>If this was unexpected or you'd like to reorder, please visit our store.</p>"
    return EmailMessage(
        subject=f"Your Order #{order.order_number} has been cancelled",
        html=content,
    )


TEMPLATES: Dict[NotificationKind, Callable[[Order], EmailMessage]] = {
    NotificationKind.ORDER_PLACED: _order_placed,
    NotificationKind.ORDER_STATUS: _order_status,
    NotificationKind.PAYMENT_STATUS: _payment_status,
    NotificationKind.ORDER_CANCELLED: _order_cancelled,
}


def render(kind: NotificationKind, order: Order, customer_name: str) -> EmailMessage:
    message = TEMPLATES[kind](order)
    message.html = _layout(customer_name, message.html)
    return message


def _layout(customer_name: str, content: str) -> str:
    frontend = settings.FRONTEND_URL
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="color: #f28c28;">Fun4Pet</h1>
    <p>Hello {escape(customer_name)},</p>
    {content}
    <p>Thank you for shopping with Fun4Pet!</p>
    <hr>
    <p style="font-size: 12px; color: #666;">
      {escape(settings.COMPANY_EMAIL)} | {escape(settings.COMPANY_PHONE)}<br>
      {escape(settings.COMPANY_ADDRESS)}<br>
      <a href="{frontend}/terms">Terms</a> |
      <a href="{frontend}/PrivacyPolicy">Privacy Policy</a> |
      <a href="{frontend}/shippingPolicy">Shipping Policy</a> |
      <a href="{frontend}/support">Support</a>
    </p>
  </div>
</body>
</html>"""
