"""
Wire models shared by the HTTP routers and the HTTP clients.

Inbound payloads are parsed tolerantly (``id`` or ``profile_id``,
``walletBalance`` or ``wallet_balance``, ...) so the clients can talk to
services that spell fields differently. Everything past this module works on
the typed dataclasses of ``orderflow.types``.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from orderflow.types import Order, OrderItem, OrderLine, PaymentRecord, PaymentStatus, ProductInfo, UserProfile


def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Users / wallets
# ---------------------------------------------------------------------------


class UserProfileOut(WireModel):
    profile_id: str = Field(validation_alias=_aliases("profile_id", "profileId", "id"))
    user_id: str = Field(validation_alias=_aliases("user_id", "userId"))
    balance: Decimal = Field(
        validation_alias=_aliases("balance", "wallet_balance", "walletBalance")
    )

    @classmethod
    def from_domain(cls, profile: UserProfile) -> "UserProfileOut":
        return cls(profile_id=profile.profile_id, user_id=profile.user_id, balance=profile.balance)

    def to_domain(self) -> UserProfile:
        return UserProfile(profile_id=self.profile_id, user_id=self.user_id, balance=self.balance)


class AmountIn(WireModel):
    amount: Decimal
    order_id: str | None = Field(default=None, validation_alias=_aliases("order_id", "orderId"))


class BalanceOut(WireModel):
    profile_id: str = Field(validation_alias=_aliases("profile_id", "profileId", "id"))
    balance: Decimal = Field(
        validation_alias=_aliases("balance", "new_balance", "newBalance", "walletBalance")
    )


# ---------------------------------------------------------------------------
# Products / stock
# ---------------------------------------------------------------------------


class ProductOut(WireModel):
    product_id: str = Field(validation_alias=_aliases("product_id", "productId", "id"))
    name: str = ""
    price: Decimal
    stock: int = Field(validation_alias=_aliases("stock", "quantity", "stockQuantity"))

    @classmethod
    def from_domain(cls, product: ProductInfo) -> "ProductOut":
        return cls(
            product_id=product.product_id,
            name=product.name,
            price=product.price,
            stock=product.stock,
        )

    def to_domain(self) -> ProductInfo:
        return ProductInfo(
            product_id=self.product_id, price=self.price, stock=self.stock, name=self.name
        )


class QuantityIn(WireModel):
    quantity: int


class StockOut(WireModel):
    product_id: str = Field(validation_alias=_aliases("product_id", "productId", "id"))
    remaining_stock: int = Field(
        validation_alias=_aliases("remaining_stock", "remainingStock", "stock")
    )


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


class PaymentIn(WireModel):
    order_id: str = Field(validation_alias=_aliases("order_id", "orderId"))
    user_id: str = Field(validation_alias=_aliases("user_id", "userId"))
    profile_id: str = Field(validation_alias=_aliases("profile_id", "profileId"))
    amount: Decimal


class PaymentRecordOut(WireModel):
    payment_id: str = Field(validation_alias=_aliases("payment_id", "paymentId", "id"))
    order_id: str = Field(validation_alias=_aliases("order_id", "orderId"))
    user_id: str = Field(validation_alias=_aliases("user_id", "userId"))
    amount: Decimal
    status: PaymentStatus
    created_at: datetime = Field(validation_alias=_aliases("created_at", "createdAt"))

    @classmethod
    def from_domain(cls, record: PaymentRecord) -> "PaymentRecordOut":
        return cls(
            payment_id=record.payment_id,
            order_id=record.order_id,
            user_id=record.user_id,
            amount=record.amount,
            status=record.status,
            created_at=record.created_at,
        )

    def to_domain(self) -> PaymentRecord:
        return PaymentRecord(
            payment_id=self.payment_id,
            order_id=self.order_id,
            user_id=self.user_id,
            amount=self.amount,
            status=self.status,
            created_at=self.created_at,
        )


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class OrderItemIn(WireModel):
    product_id: str = Field(validation_alias=_aliases("product_id", "productId"))
    quantity: int

    def to_domain(self) -> OrderItem:
        return OrderItem(product_id=self.product_id, quantity=self.quantity)


class CreateOrderIn(WireModel):
    user_id: str = Field(validation_alias=_aliases("user_id", "userId"))
    items: list[OrderItemIn] = Field(default_factory=list)


class OrderLineOut(WireModel):
    product_id: str = Field(validation_alias=_aliases("product_id", "productId"))
    quantity: int
    unit_price: Decimal = Field(validation_alias=_aliases("unit_price", "unitPrice"))


class OrderOut(WireModel):
    order_id: str = Field(validation_alias=_aliases("order_id", "orderId", "id"))
    user_id: str = Field(validation_alias=_aliases("user_id", "userId"))
    total: Decimal = Field(validation_alias=_aliases("total", "total_amount", "totalAmount"))
    created_at: datetime | None = Field(
        default=None, validation_alias=_aliases("created_at", "createdAt")
    )
    lines: list[OrderLineOut] = Field(
        default_factory=list, validation_alias=_aliases("lines", "items")
    )

    @classmethod
    def from_domain(cls, order: Order) -> "OrderOut":
        return cls(
            order_id=order.order_id,
            user_id=order.user_id,
            total=order.total,
            created_at=order.created_at,
            lines=[
                OrderLineOut(
                    product_id=line.product_id, quantity=line.quantity, unit_price=line.unit_price
                )
                for line in order.lines
            ],
        )

    def to_domain(self) -> Order:
        return Order(
            order_id=self.order_id,
            user_id=self.user_id,
            total=self.total,
            created_at=self.created_at,
            lines=tuple(
                OrderLine(product_id=line.product_id, quantity=line.quantity, unit_price=line.unit_price)
                for line in self.lines
            ),
        )


class ErrorOut(WireModel):
    code: str
    reason: str
    message: str
    details: dict = Field(default_factory=dict)
