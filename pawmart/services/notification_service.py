"""
Order notifications

Best-effort: a failed lookup, render or send is logged and never
propagates into the order flow that triggered it.
"""

import logging
from typing import Optional

from pawmart.database.base import OrderStore
from pawmart.models.catalog import UserProfile
from pawmart.models.order import Order
from pawmart.services.email_service import EmailService
from pawmart.services.email_templates import NotificationKind, render

logger = logging.getLogger(__name__)


class NotificationService:

    def __init__(self, store: OrderStore, email_service: EmailService):
        self.store = store
        self.email_service = email_service

    async def notify(self, kind: NotificationKind, order: Order,
                     recipient: Optional[UserProfile] = None) -> bool:
        try:
            recipient = recipient or await self.store.get_user(order.user_id)
            if recipient is None or not recipient.email:
                logger.warning(f"No email on file for user {order.user_id}; skipping {kind.value} email")
                return False

            message = render(kind, order, recipient.name or "Customer")
            sent = await self.email_service.send_email(recipient.email, message.subject, message.html)
            if not sent:
                logger.warning(f"{kind.value} email for order {order.order_number} was not sent")
            return sent
        except Exception as e:
            logger.error(f"Failed to send {kind.value} email for order {order.order_number}: {e}", exc_info=True)
            return False

    async def order_placed(self, order: Order, recipient: Optional[UserProfile] = None) -> bool:
        return await self.notify(NotificationKind.ORDER_PLACED, order, recipient)

    async def order_status_changed(self, order: Order) -> bool:
        return await self.notify(NotificationKind.ORDER_STATUS, order)

    async def payment_status_changed(self, order: Order) -> bool:
        return await self.notify(NotificationKind.PAYMENT_STATUS, order)

    async def order_cancelled(self, order: Order) -> bool:
        return await self.notify(NotificationKind.ORDER_CANCELLED, order)
