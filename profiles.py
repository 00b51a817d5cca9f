"""
=============================================================================
PROFILES.PY — Perfil de usuario
=============================================================================
  - Perfil propio: monedas, racha, energía del avatar y estadísticas
  - Perfil público de otro usuario: si es privado, solo sus seguidores
    ven las estadísticas
  - Edición: nombre visible y privacidad
"""

import logging

from sqlalchemy.orm import Session

from errors import NotFound, db_operation
from gamification import get_energy_level, max_daily_challenges
from models import ChallengeStatus, User, UserChallenge
from social import count_followers, count_following, is_following, serialize_public_user

logger = logging.getLogger("calixo.profile")


def _stats(db: Session, user: User) -> dict:
    completed = db.query(UserChallenge).filter(
        UserChallenge.user_id == user.id,
        UserChallenge.status == ChallengeStatus.completed.value,
    ).count()
    return {
        "completedChallenges": completed,
        "followers": count_followers(db, user.id),
        "following": count_following(db, user.id),
    }


def get_own_profile(db: Session, user: User) -> dict:
    energy = user.avatar_energy
    return {
        "userId": user.id,
        "email": user.email,
        "displayName": user.display_name,
        "coins": user.coins,
        "streak": user.streak,
        "avatarEnergy": energy,
        "energyLevel": get_energy_level(energy),
        "isPremium": bool(user.is_premium),
        "isPrivate": bool(user.is_private),
        "maxDailyChallenges": max_daily_challenges(user),
        "createdAt": user.created_at,
        "stats": _stats(db, user),
    }


def get_public_profile(db: Session, viewer: User, user_id: str) -> dict:
    """Perfil de otro usuario. Privado + no seguidor → sin estadísticas."""
    if user_id == viewer.id:
        return get_own_profile(db, viewer)

    target = db.query(User).filter(User.id == user_id).first()
    if not target:
        raise NotFound("Usuario no encontrado")

    following = is_following(db, viewer.id, target.id)
    data = serialize_public_user(target)
    data["isFollowing"] = following

    if target.is_private and not following:
        data["stats"] = None
        return data

    data["streak"] = target.streak
    data["energyLevel"] = get_energy_level(target.avatar_energy)
    data["stats"] = _stats(db, target)
    return data


def update_profile(db: Session, user: User, display_name: str = None, is_private: bool = None) -> dict:
    with db_operation(db, "Error al actualizar el perfil"):
        if display_name is not None:
            user.display_name = display_name.strip()
        if is_private is not None:
            user.is_private = is_private
        db.commit()
        db.refresh(user)

    logger.info(f"✏️ Perfil actualizado: {user.id}")
    return get_own_profile(db, user)
