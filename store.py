"""
=============================================================================
STORE.PY — Tienda de cupones
=============================================================================
Las monedas ganadas con los retos se canjean por cupones de descuento
de partners.

Compra:
  1. El cupón debe estar activo, dentro de fechas y con usos libres
  2. Un usuario no puede comprar el mismo cupón dos veces
  3. El saldo se descuenta con un UPDATE condicional (coins >= price),
     así nunca queda negativo aunque haya dos compras a la vez
  4. Se apunta un "spend" en el libro de transacciones
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from errors import NotFound, ValidationError, db_operation
from gamification import record_transaction
from models import Coupon, TransactionType, User, UserCoupon

logger = logging.getLogger("calixo.store")


def serialize_coupon(coupon: Coupon) -> dict:
    return {
        "id": coupon.id,
        "code": coupon.code,
        "discountPercent": coupon.discount_percent,
        "partnerName": coupon.partner_name,
        "description": coupon.description,
        "price": coupon.price,
        "maxUses": coupon.max_uses,
        "usedCount": coupon.used_count,
        "validFrom": coupon.valid_from,
        "validUntil": coupon.valid_until,
        "isActive": coupon.is_active,
    }


def _available_coupons_query(db: Session, now: datetime):
    return db.query(Coupon).filter(
        Coupon.is_active == True,
        Coupon.valid_until > now,
        (Coupon.valid_from == None) | (Coupon.valid_from <= now),
    )


def _is_sold_out(coupon: Coupon) -> bool:
    return coupon.max_uses is not None and (coupon.used_count or 0) >= coupon.max_uses


def list_store(db: Session, user: User, now: datetime = None) -> dict:
    """Cupones disponibles con si el usuario puede pagarlos o ya los tiene"""
    now = now or datetime.utcnow()
    coupons = _available_coupons_query(db, now).order_by(Coupon.price, Coupon.id).all()
    purchased_ids = {
        row.coupon_id for row in
        db.query(UserCoupon.coupon_id).filter(UserCoupon.user_id == user.id).all()
    }

    items = []
    for coupon in coupons:
        item = serialize_coupon(coupon)
        item["canAfford"] = user.coins >= coupon.price
        item["purchased"] = coupon.id in purchased_ids
        item["soldOut"] = _is_sold_out(coupon)
        items.append(item)

    return {"items": items, "coins": user.coins}


def purchase_coupon(db: Session, user: User, coupon_id: int, now: datetime = None) -> dict:
    now = now or datetime.utcnow()

    coupon = _available_coupons_query(db, now).filter(Coupon.id == coupon_id).first()
    if not coupon:
        raise NotFound("Cupón no encontrado o caducado")

    already = db.query(UserCoupon).filter(
        UserCoupon.user_id == user.id,
        UserCoupon.coupon_id == coupon.id,
    ).first()
    if already:
        raise ValidationError("Ya has comprado este cupón")

    if _is_sold_out(coupon):
        raise ValidationError("Este cupón está agotado")

    with db_operation(db, "Error al comprar el cupón"):
        charged = db.query(User).filter(
            User.id == user.id,
            User.coins >= coupon.price,
        ).update({
            User.coins: User.coins - coupon.price,
            User.updated_at: now,
        }, synchronize_session=False)
        if charged != 1:
            db.rollback()
            raise ValidationError("No tienes suficientes monedas")

        db.query(Coupon).filter(Coupon.id == coupon.id).update(
            {Coupon.used_count: Coupon.used_count + 1}, synchronize_session=False
        )
        db.add(UserCoupon(user_id=user.id, coupon_id=coupon.id, purchased_at=now))
        record_transaction(
            db, user.id, coupon.price, TransactionType.spend.value,
            f"Cupón {coupon.code} ({coupon.partner_name})",
            coupon_code=coupon.code,
        )
        db.commit()
        db.refresh(user)
        db.refresh(coupon)

    logger.info(f"🛒 Cupón {coupon.code} comprado por {user.id} (-{coupon.price} monedas)")

    return {"success": True, "coupon": serialize_coupon(coupon), "newCoins": user.coins}


def list_purchased(db: Session, user: User) -> list:
    rows = db.query(UserCoupon).filter(
        UserCoupon.user_id == user.id
    ).order_by(UserCoupon.purchased_at.desc()).all()
    result = []
    for row in rows:
        item = serialize_coupon(row.coupon)
        item["purchasedAt"] = row.purchased_at
        result.append(item)
    return result
