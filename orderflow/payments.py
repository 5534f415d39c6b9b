"""
Payment handling.

``PaymentProcessor`` is the component that moves money for orders: it debits
or credits a wallet through the ``WalletLedger`` and pairs every outcome with
an append-only ``PaymentRecord`` so the audit trail shows whether a refund is
owed.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from orderflow.core.exceptions import ConflictError, NotFoundError
from orderflow.core.logger import get_logger
from orderflow.core.ports import PaymentService
from orderflow.core.validation import require_positive_amount
from orderflow.types import PaymentRecord, PaymentStatus

if TYPE_CHECKING:
    from orderflow.ledgers.base import PaymentLog, WalletLedger

logger = get_logger(__name__)


class PaymentProcessor(PaymentService):
    """
    Charges and refunds backed by a wallet ledger and a payment log.

    Example:
        >>> processor = PaymentProcessor(wallets, payment_log)
        >>> record = await processor.charge("order-1", "user-1", profile_id, Decimal("600"))
        >>> record.status
        <PaymentStatus.PAID: 'Paid'>
    """

    def __init__(self, wallets: WalletLedger, log: PaymentLog):
        self.wallets = wallets
        self.log = log

    async def charge(
        self, order_id: str, user_id: str, profile_id: str, amount: Any
    ) -> PaymentRecord:
        """
        Debit the wallet and record a ``Paid`` entry.

        A rejected debit (unknown wallet or insufficient balance) is recorded
        as ``Failed`` before the error propagates.

        Raises:
            InvalidRequestError: amount <= 0
            NotFoundError: Unknown wallet
            InsufficientBalanceError: Balance lower than amount
        """
        amount = require_positive_amount(amount)
        try:
            balance = await self.wallets.debit(profile_id, amount)
        except (NotFoundError, ConflictError) as e:
            logger.warning(f"Payment for order {order_id} rejected: {e.message}")
            await self._record(order_id, user_id, amount, PaymentStatus.FAILED)
            raise

        try:
            record = await self._record(order_id, user_id, amount, PaymentStatus.PAID)
        except BaseException:
            # No refund is owed by the caller until charge returns.
            logger.error(f"Recording payment for order {order_id} failed, returning {amount}")
            await self.wallets.credit(profile_id, amount)
            raise

        logger.info(f"Charged {amount} for order {order_id}, balance now {balance}")
        return record

    async def refund(
        self, order_id: str, user_id: str, profile_id: str, amount: Any
    ) -> PaymentRecord:
        """
        Credit the wallet and record a ``Refunded`` entry with a negative amount.

        Raises:
            InvalidRequestError: amount <= 0
            NotFoundError: Unknown wallet
        """
        amount = require_positive_amount(amount)
        balance = await self.wallets.credit(profile_id, amount)
        record = await self._record(order_id, user_id, -amount, PaymentStatus.REFUNDED)
        logger.info(f"Refunded {amount} for order {order_id}, balance now {balance}")
        return record

    async def history(self, order_id: str) -> list[PaymentRecord]:
        return await self.log.list_for_order(order_id)

    async def history_for_user(self, user_id: str) -> list[PaymentRecord]:
        return await self.log.list_for_user(user_id)

    async def _record(
        self, order_id: str, user_id: str, amount: Decimal, status: PaymentStatus
    ) -> PaymentRecord:
        return await self.log.append(
            PaymentRecord(
                payment_id=str(uuid.uuid4()),
                order_id=order_id,
                user_id=user_id,
                amount=amount,
                status=status,
                created_at=datetime.now(UTC),
            )
        )
