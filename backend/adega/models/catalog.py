from __future__ import annotations

from ..extensions import db
from adega.money_utils import money_str
from adega.time_utils import to_utc_z
from ._ids import new_id


class Category(db.Model):
    """
    Menu category (Cervejas, Destilados, Caipirinhas, ...).

    The category NAME matters beyond display: prepared-drink categories
    (doses, caipirinhas, batidas, ...) make their products stock-exempt.
    See services.stock_service.is_prepared_category_name.
    """
    __tablename__ = "categories"
    __table_args__ = (
        db.Index("ix_categories_active_sort", "is_active", "sort_order"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(120), nullable=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    products = db.relationship(
        "Product",
        back_populates="category",
        cascade="all, delete-orphan",
        lazy=True,
    )

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sortOrder": self.sort_order,
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    STOCK: `stock` is the on-hand count and is only ever written by the
    stock ledger (services.stock_service.apply_delta), which appends a
    StockLog row for every change. Catalog edits that touch stock are
    routed through the ledger too.

    Products are soft-disabled through `is_active`; historic order items
    keep a name/price snapshot so they do not depend on this row.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_category_active", "category_id", "is_active"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    category_id = db.Column(
        db.String(36),
        db.ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    cost_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    profit_margin = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    sale_price = db.Column(db.Numeric(10, 2), nullable=False)

    stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    # Prepared on demand (cocktails, doses): never tracked, always sellable
    is_prepared = db.Column(db.Boolean, nullable=False, default=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    category = db.relationship("Category", back_populates="products")

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "categoryId": self.category_id,
            "name": self.name,
            "description": self.description,
            "costPrice": money_str(self.cost_price),
            "profitMargin": money_str(self.profit_margin),
            "salePrice": money_str(self.sale_price),
            "stock": self.stock,
            "isActive": self.is_active,
            "isPrepared": self.is_prepared,
            "sortOrder": self.sort_order,
            "createdAt": to_utc_z(self.created_at),
        }
