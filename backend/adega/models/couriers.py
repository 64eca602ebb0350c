from __future__ import annotations

from ..extensions import db
from adega.time_utils import to_utc_z
from ._ids import new_id


class Courier(db.Model):
    """
    Delivery courier (motoboy).

    Assignment lives on Order.motoboy_id; it is not an exclusive lock, so
    several dispatched orders may reference the same courier.
    """
    __tablename__ = "motoboys"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False)
    whatsapp = db.Column(db.String(32), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Courier id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "whatsapp": self.whatsapp,
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
        }
