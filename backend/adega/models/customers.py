from __future__ import annotations

from ..extensions import db
from adega.time_utils import to_utc_z
from ._ids import new_id


class Customer(db.Model):
    """Customer placing delivery orders. Counter sales have no customer."""
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False)
    whatsapp = db.Column(db.String(32), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    addresses = db.relationship("Address", back_populates="customer", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "whatsapp": self.whatsapp,
            "createdAt": to_utc_z(self.created_at),
        }


class Address(db.Model):
    __tablename__ = "addresses"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    street = db.Column(db.String(255), nullable=False)
    number = db.Column(db.String(32), nullable=False)
    complement = db.Column(db.String(255), nullable=True)
    neighborhood = db.Column(db.String(120), nullable=False)
    city = db.Column(db.String(120), nullable=False)
    state = db.Column(db.String(32), nullable=False)
    zip_code = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    customer = db.relationship("Customer", back_populates="addresses")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "street": self.street,
            "number": self.number,
            "complement": self.complement,
            "neighborhood": self.neighborhood,
            "city": self.city,
            "state": self.state,
            "zipCode": self.zip_code,
            "notes": self.notes,
        }
