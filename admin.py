"""
=============================================================================
ADMIN.PY — Gestión del catálogo (solo administradores)
=============================================================================
  - Retos: listar todos (también los desactivados), crear, editar
  - Cupones: crear
  - Usuarios: activar o quitar Premium

El permiso lo comprueba la dependencia auth.require_admin antes de llegar
aquí.

Un reto con intentos en curso o terminados sin reclamar no puede cambiar
de tipo, recompensa ni duración: la recompensa se calcula al reclamar con
los datos del catálogo. Título, descripción e is_active sí se pueden editar.
"""

import logging

from sqlalchemy.orm import Session

from challenge_lifecycle import serialize_challenge
from errors import InvalidState, NotFound, ValidationError, db_operation
from models import Challenge, ChallengeStatus, Coupon, User, UserChallenge
from store import serialize_coupon

logger = logging.getLogger("calixo.admin")

NULLABLE_FIELDS = {"description", "duration_minutes"}
# duration_minutes → null = reto corto

REWARD_FIELDS = {"type", "reward", "duration_minutes"}
OPEN_ATTEMPT_STATUSES = (ChallengeStatus.in_progress.value, ChallengeStatus.finished.value)


def list_all_challenges(db: Session) -> list:
    challenges = db.query(Challenge).order_by(Challenge.type, Challenge.id).all()
    return [serialize_challenge(c) for c in challenges]


def create_challenge(db: Session, data: dict) -> dict:
    challenge = Challenge(**data)
    with db_operation(db, "Error al crear el reto"):
        db.add(challenge)
        db.commit()
        db.refresh(challenge)

    logger.info(f"🆕 Reto creado: [{challenge.type}] {challenge.title}")
    return serialize_challenge(challenge)


def _has_open_attempts(db: Session, challenge_id: int) -> bool:
    return db.query(UserChallenge.id).filter(
        UserChallenge.challenge_id == challenge_id,
        UserChallenge.status.in_(OPEN_ATTEMPT_STATUSES)
    ).first() is not None


def update_challenge(db: Session, challenge_id: int, changes: dict) -> dict:
    """Solo se tocan los campos enviados. Desactivar = is_active False."""
    challenge = db.query(Challenge).filter(Challenge.id == challenge_id).first()
    if not challenge:
        raise NotFound("Reto no encontrado")

    for field, value in changes.items():
        if value is None and field not in NULLABLE_FIELDS:
            raise ValidationError(f"El campo '{field}' no puede estar vacío")

    touched = [
        field for field, value in changes.items()
        if field in REWARD_FIELDS and value != getattr(challenge, field)
    ]
    if touched and _has_open_attempts(db, challenge_id):
        logger.warning(f"⚠️ Edición bloqueada del reto {challenge_id}: {', '.join(touched)}")
        raise InvalidState(
            "No se puede cambiar el tipo, la recompensa o la duración "
            "de un reto con intentos pendientes"
        )

    with db_operation(db, "Error al actualizar el reto"):
        for field, value in changes.items():
            setattr(challenge, field, value)
        db.commit()
        db.refresh(challenge)

    logger.info(f"✏️ Reto actualizado: {challenge.id} ({', '.join(changes) or 'sin cambios'})")
    return serialize_challenge(challenge)


def create_coupon(db: Session, data: dict) -> dict:
    if db.query(Coupon).filter(Coupon.code == data["code"]).first():
        raise ValidationError("Ya existe un cupón con ese código")
    if data.get("valid_from") and data["valid_from"] >= data["valid_until"]:
        raise ValidationError("La fecha de fin debe ser posterior a la de inicio")
    if data.get("valid_from") is None:
        data.pop("valid_from", None)

    coupon = Coupon(**data)
    with db_operation(db, "Error al crear el cupón"):
        db.add(coupon)
        db.commit()
        db.refresh(coupon)

    logger.info(f"🎟️ Cupón creado: {coupon.code} ({coupon.partner_name}, {coupon.price} monedas)")
    return serialize_coupon(coupon)


def set_premium(db: Session, user_id: str, is_premium) -> dict:
    """
    Activa o quita Premium. No caduca: sigue activo hasta que un
    administrador lo desactive.
    """
    if not isinstance(is_premium, bool):
        raise ValidationError("isPremium debe ser un booleano")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("Usuario no encontrado")

    with db_operation(db, "Error al actualizar estado Premium"):
        user.is_premium = is_premium
        db.commit()
        db.refresh(user)

    logger.info(f"💎 Premium {'activado' if is_premium else 'desactivado'} para {user.id}")
    return {"success": True, "user": {"id": user.id, "isPremium": user.is_premium}}
