"""Courier (motoboy) registry. WhatsApp numbers are unique per courier."""
from __future__ import annotations

from ..extensions import db
from ..models import Courier, Order
from ..validation import ConflictError, NotFoundError
from .concurrency import run_with_retry

COURIER_MUTABLE_FIELDS = {"name", "whatsapp", "is_active"}


def list_couriers(*, active_only: bool = False) -> list[Courier]:
    q = db.session.query(Courier)
    if active_only:
        q = q.filter(Courier.is_active.is_(True))
    return q.order_by(Courier.name.asc()).all()


def get_courier(courier_id: str) -> Courier:
    courier = db.session.get(Courier, courier_id)
    if courier is None:
        raise NotFoundError(f"Courier {courier_id} not found")
    return courier


def _ensure_whatsapp_free(whatsapp: str, *, exclude_id: str | None = None) -> None:
    q = db.session.query(Courier).filter(Courier.whatsapp == whatsapp)
    if exclude_id is not None:
        q = q.filter(Courier.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("A courier with this WhatsApp already exists")


def create_courier(patch: dict) -> Courier:
    def _op():
        _ensure_whatsapp_free(patch["whatsapp"])
        courier = Courier(**{k: v for k, v in patch.items() if k in COURIER_MUTABLE_FIELDS})
        db.session.add(courier)
        db.session.commit()
        return courier

    return run_with_retry(_op)


def update_courier(courier_id: str, patch: dict) -> Courier:
    def _op():
        courier = get_courier(courier_id)
        if "whatsapp" in patch and patch["whatsapp"] != courier.whatsapp:
            _ensure_whatsapp_free(patch["whatsapp"], exclude_id=courier.id)
        for k, v in patch.items():
            if k in COURIER_MUTABLE_FIELDS:
                setattr(courier, k, v)
        db.session.commit()
        return courier

    return run_with_retry(_op)


def delete_courier(courier_id: str) -> None:
    """
    Couriers referenced by orders are kept for the delivery history;
    they can only be deactivated.
    """
    def _op():
        courier = get_courier(courier_id)
        if db.session.query(Order.id).filter_by(motoboy_id=courier.id).first() is not None:
            raise ConflictError("Courier has delivery history and cannot be deleted; deactivate instead")
        db.session.delete(courier)
        db.session.commit()

    run_with_retry(_op)
