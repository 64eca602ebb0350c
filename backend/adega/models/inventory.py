from __future__ import annotations

from ..extensions import db
from adega.time_utils import to_utc_z, utcnow
from ._ids import new_id


class StockLog(db.Model):
    """
    Append-only ledger of stock changes.

    One row per call to stock_service.apply_delta: order placement,
    cancellation, preparation ingredients, manual adjustments and catalog
    edits. `change` is the signed delta that was requested; previous/new
    show what actually happened (the ledger clamps at zero).

    IMMUTABLE: Rows are never updated or deleted.
    """
    __tablename__ = "stock_logs"
    __table_args__ = (
        db.Index("ix_stock_logs_product_created", "product_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)

    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    change = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product", backref=db.backref("stock_logs", lazy=True, passive_deletes=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "previousStock": self.previous_stock,
            "newStock": self.new_stock,
            "change": self.change,
            "reason": self.reason,
            "createdAt": to_utc_z(self.created_at),
        }
