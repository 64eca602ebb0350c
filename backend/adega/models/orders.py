from __future__ import annotations

from ..extensions import db
from adega.money_utils import money_str
from adega.time_utils import to_utc_z, utcnow
from ._ids import new_id


ORDER_TYPES = ("delivery", "counter")
ORDER_STATUSES = (
    "pending",
    "accepted",
    "preparing",
    "ready",
    "dispatched",
    "arrived",
    "delivered",
    "cancelled",
)
PAYMENT_METHODS = ("cash", "pix", "card_pos", "card_credit", "card_debit")


class Order(db.Model):
    """
    Customer order (delivery) or point-of-sale ticket (counter).

    LIFECYCLE: `status` only changes through
    services.order_lifecycle_service, which validates the move against the
    transition table for `order_type` and stamps the matching *_at column.
    `created_at` doubles as the timestamp for `pending`.

    MONEY: total == subtotal - discount + delivery_fee at creation. The
    delivery fee may be corrected later (adjust_delivery_fee), which keeps
    the first fee in original_delivery_fee and recomputes total.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_motoboy_status", "motoboy_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    # Null for counter sales
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)
    address_id = db.Column(db.String(36), db.ForeignKey("addresses.id"), nullable=True)

    order_type = db.Column(db.String(16), nullable=False, default="delivery", index=True)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    subtotal = db.Column(db.Numeric(10, 2), nullable=False)
    delivery_fee = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    original_delivery_fee = db.Column(db.Numeric(10, 2), nullable=True)
    delivery_fee_adjusted = db.Column(db.Boolean, nullable=False, default=False)
    delivery_fee_adjusted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    discount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(10, 2), nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)
    change_for = db.Column(db.Numeric(10, 2), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)
    salesperson = db.Column(db.String(64), nullable=True)

    motoboy_id = db.Column(db.String(36), db.ForeignKey("motoboys.id"), nullable=True)

    # One timestamp per status
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    preparing_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ready_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    arrived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy=True,
    )
    courier = db.relationship("Courier", backref=db.backref("orders", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    address = db.relationship("Address")

    def __repr__(self) -> str:
        return f"<Order id={self.id} type={self.order_type} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "addressId": self.address_id,
            "orderType": self.order_type,
            "status": self.status,
            "subtotal": money_str(self.subtotal),
            "deliveryFee": money_str(self.delivery_fee),
            "originalDeliveryFee": money_str(self.original_delivery_fee),
            "deliveryFeeAdjusted": self.delivery_fee_adjusted,
            "deliveryFeeAdjustedAt": to_utc_z(self.delivery_fee_adjusted_at),
            "discount": money_str(self.discount),
            "total": money_str(self.total),
            "paymentMethod": self.payment_method,
            "changeFor": money_str(self.change_for),
            "notes": self.notes,
            "customerName": self.customer_name,
            "salesperson": self.salesperson,
            "motoboyId": self.motoboy_id,
            "createdAt": to_utc_z(self.created_at),
            "acceptedAt": to_utc_z(self.accepted_at),
            "preparingAt": to_utc_z(self.preparing_at),
            "readyAt": to_utc_z(self.ready_at),
            "dispatchedAt": to_utc_z(self.dispatched_at),
            "arrivedAt": to_utc_z(self.arrived_at),
            "deliveredAt": to_utc_z(self.delivered_at),
            "cancelledAt": to_utc_z(self.cancelled_at),
        }


class OrderItem(db.Model):
    """
    Line item on an order. Immutable once created.

    product_name and unit_price are snapshots taken at order time so that
    catalog edits never rewrite history.
    """
    __tablename__ = "order_items"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    total_price = db.Column(db.Numeric(10, 2), nullable=False)

    order = db.relationship("Order", back_populates="items")
    product = db.relationship("Product")
    ingredients = db.relationship(
        "PreparationIngredient",
        back_populates="order_item",
        cascade="all, delete-orphan",
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "productId": self.product_id,
            "productName": self.product_name,
            "quantity": self.quantity,
            "unitPrice": money_str(self.unit_price),
            "totalPrice": money_str(self.total_price),
        }


class PreparationIngredient(db.Model):
    """
    Ingredient consumed while preparing an order item (e.g. the vodka
    poured into a caipiroska). Recorded by the kitchen; optionally deducts
    the ingredient's stock through the ledger.
    """
    __tablename__ = "preparation_ingredients"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_item_id = db.Column(
        db.String(36),
        db.ForeignKey("order_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ingredient_product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    order_item = db.relationship("OrderItem", back_populates="ingredients")
    ingredient_product = db.relationship("Product")

    def to_dict(self, *, include_product: bool = False) -> dict:
        data = {
            "id": self.id,
            "orderItemId": self.order_item_id,
            "ingredientProductId": self.ingredient_product_id,
            "quantity": self.quantity,
            "createdAt": to_utc_z(self.created_at),
        }
        if include_product:
            product = self.ingredient_product
            data["ingredientProduct"] = product.to_dict() if product else None
        return data
