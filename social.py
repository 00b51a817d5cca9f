"""
=============================================================================
SOCIAL.PY — Feed, seguidores y retos sociales
=============================================================================
  - Feed: publicaciones de retos compartidos, likes
  - Seguidores: seguir / dejar de seguir
  - Retos sociales: invitar a otro usuario y aceptar invitaciones

Cada acción que afecta a otro usuario le deja una notificación.
"""

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import Forbidden, InvalidState, NotFound, ValidationError, db_operation
from models import (
    Challenge, ChallengeType, FeedItem, FeedLike, Follower, NotificationType,
    SocialSession, SocialSessionStatus, User
)
from notifications import create_notification

logger = logging.getLogger("calixo.social")

FEED_PAGE_SIZE = 20


def serialize_feed_item(item: FeedItem, author: User = None, is_liked: bool = None) -> dict:
    data = {
        "id": item.id,
        "userChallengeId": item.user_challenge_id,
        "userId": item.user_id,
        "imageUrl": item.image_url,
        "note": item.note,
        "likesCount": item.likes_count or 0,
        "createdAt": item.created_at,
    }
    if author is not None:
        data["displayName"] = author.display_name
        data["isPremium"] = bool(author.is_premium)
        data["avatarEnergy"] = author.avatar_energy
    if is_liked is not None:
        data["isLiked"] = is_liked
    return data


def serialize_public_user(user: User) -> dict:
    return {
        "userId": user.id,
        "displayName": user.display_name,
        "avatarEnergy": user.avatar_energy,
        "isPremium": bool(user.is_premium),
        "isPrivate": bool(user.is_private),
    }


# =============================================================================
# ===================== FEED ==================================================
# =============================================================================

def _liked_ids(db: Session, user: User, items: list) -> set:
    return {
        row.feed_item_id for row in
        db.query(FeedLike.feed_item_id).filter(
            FeedLike.user_id == user.id,
            FeedLike.feed_item_id.in_([i.id for i in items]),
        ).all()
    }


def _ensure_visible(db: Session, viewer: User, author: User):
    """Un perfil privado solo lo ven su dueño y sus seguidores"""
    if author.is_private and author.id != viewer.id and not is_following(db, viewer.id, author.id):
        raise Forbidden("Este perfil es privado")


def get_feed(db: Session, user: User, limit: int = FEED_PAGE_SIZE, offset: int = 0) -> list:
    """Publicaciones visibles del usuario y de las personas que sigue"""
    following_ids = [
        row.following_id for row in
        db.query(Follower.following_id).filter(Follower.follower_id == user.id).all()
    ]
    author_ids = following_ids + [user.id]

    items = db.query(FeedItem).filter(
        FeedItem.user_id.in_(author_ids),
        FeedItem.is_hidden == False,
    ).order_by(FeedItem.created_at.desc(), FeedItem.id.desc()).offset(offset).limit(limit).all()

    if not items:
        return []

    liked_ids = _liked_ids(db, user, items)
    authors = {u.id: u for u in db.query(User).filter(User.id.in_({i.user_id for i in items})).all()}

    return [serialize_feed_item(i, authors.get(i.user_id), i.id in liked_ids) for i in items]


def get_feed_item(db: Session, viewer: User, feed_item_id: int) -> dict:
    item = db.query(FeedItem).filter(FeedItem.id == feed_item_id).first()
    if not item or item.is_hidden:
        raise NotFound("Post no encontrado")

    author = db.query(User).filter(User.id == item.user_id).first()
    if not author:
        raise NotFound("Usuario no encontrado")
    _ensure_visible(db, viewer, author)

    return serialize_feed_item(item, author, item.id in _liked_ids(db, viewer, [item]))


def get_user_feed(db: Session, viewer: User, user_id: str, limit: int = FEED_PAGE_SIZE, offset: int = 0) -> dict:
    """
    Publicaciones de un perfil concreto, las más nuevas primero.
    El total solo se calcula en la primera página.
    """
    author = db.query(User).filter(User.id == user_id).first()
    if not author:
        raise NotFound("Usuario no encontrado")
    _ensure_visible(db, viewer, author)

    query = db.query(FeedItem).filter(
        FeedItem.user_id == user_id,
        FeedItem.is_hidden == False,
    )
    items = query.order_by(FeedItem.created_at.desc(), FeedItem.id.desc()).offset(offset).limit(limit).all()

    result = {"items": [], "hasMore": len(items) == limit}
    if offset == 0:
        result["total"] = query.count()
    if items:
        liked_ids = _liked_ids(db, viewer, items)
        result["items"] = [serialize_feed_item(i, author, i.id in liked_ids) for i in items]
    return result


def toggle_like(db: Session, user: User, feed_item_id: int) -> dict:
    """
    Like / unlike de una publicación.
    Si falla la actualización del contador no se falla la petición.
    """
    item = db.query(FeedItem).filter(FeedItem.id == feed_item_id).first()
    if not item or item.is_hidden:
        raise NotFound("Post no encontrado")

    existing = db.query(FeedLike).filter(
        FeedLike.feed_item_id == feed_item_id,
        FeedLike.user_id == user.id,
    ).first()
    likes_count = item.likes_count or 0

    with db_operation(db, "Error al dar like"):
        if existing:
            db.delete(existing)
            db.commit()
            is_liked = False
            likes_count = max(0, likes_count - 1)
        else:
            try:
                db.add(FeedLike(feed_item_id=feed_item_id, user_id=user.id))
                db.commit()
            except IntegrityError:
                # Like duplicado (doble clic): la otra petición ya contó y notificó
                db.rollback()
                return {"success": True, "isLiked": True, "likesCount": likes_count}
            is_liked = True
            likes_count += 1

            if item.user_id != user.id:
                create_notification(
                    db, item.user_id, NotificationType.social, "Nuevo like",
                    f"{user.display_name or 'Alguien'} le dio like a tu publicación",
                    {"type": "feed_like", "feedItemId": item.id, "likerId": user.id},
                )
                db.commit()

    try:
        db.query(FeedItem).filter(FeedItem.id == feed_item_id).update(
            {FeedItem.likes_count: likes_count}, synchronize_session=False
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error actualizando likes_count del post {feed_item_id}: {e}")

    return {"success": True, "isLiked": is_liked, "likesCount": likes_count}


# =============================================================================
# ===================== SEGUIDORES ============================================
# =============================================================================

def toggle_follow(db: Session, user: User, target_id: str) -> dict:
    """Seguir / dejar de seguir a otro usuario"""
    if target_id == user.id:
        raise ValidationError("No puedes seguirte a ti mismo")

    target = db.query(User).filter(User.id == target_id).first()
    if not target:
        raise NotFound("Usuario no encontrado")

    existing = db.query(Follower).filter(
        Follower.follower_id == user.id,
        Follower.following_id == target_id,
    ).first()

    with db_operation(db, "Error al actualizar el seguimiento"):
        if existing:
            db.delete(existing)
            now_following = False
        else:
            db.add(Follower(follower_id=user.id, following_id=target_id))
            create_notification(
                db, target_id, NotificationType.social, "Nuevo seguidor",
                f"{user.display_name or 'Alguien'} ha empezado a seguirte",
                {"type": "new_follower", "followerId": user.id},
            )
            now_following = True
        db.commit()

    return {
        "success": True,
        "isFollowing": now_following,
        "followersCount": count_followers(db, target_id),
    }


def count_followers(db: Session, user_id: str) -> int:
    return db.query(Follower).filter(Follower.following_id == user_id).count()


def count_following(db: Session, user_id: str) -> int:
    return db.query(Follower).filter(Follower.follower_id == user_id).count()


def is_following(db: Session, follower_id: str, following_id: str) -> bool:
    return db.query(Follower).filter(
        Follower.follower_id == follower_id,
        Follower.following_id == following_id,
    ).first() is not None


def list_followers(db: Session, user_id: str, limit: int = 50) -> list:
    rows = db.query(User).join(Follower, Follower.follower_id == User.id).filter(
        Follower.following_id == user_id
    ).order_by(Follower.created_at.desc()).limit(limit).all()
    return [serialize_public_user(u) for u in rows]


def list_following(db: Session, user_id: str, limit: int = 50) -> list:
    rows = db.query(User).join(Follower, Follower.following_id == User.id).filter(
        Follower.follower_id == user_id
    ).order_by(Follower.created_at.desc()).limit(limit).all()
    return [serialize_public_user(u) for u in rows]


# =============================================================================
# ===================== RETOS SOCIALES ========================================
# =============================================================================

def serialize_social_session(session: SocialSession) -> dict:
    return {
        "id": session.id,
        "inviterId": session.inviter_id,
        "inviteeId": session.invitee_id,
        "challengeId": session.challenge_id,
        "status": session.status,
        "createdAt": session.created_at,
        "acceptedAt": session.accepted_at,
    }


def list_social_sessions(db: Session, user: User) -> list:
    sessions = db.query(SocialSession).filter(
        (SocialSession.inviter_id == user.id) | (SocialSession.invitee_id == user.id)
    ).order_by(SocialSession.created_at.desc()).all()
    return [serialize_social_session(s) for s in sessions]


def invite_to_social_challenge(db: Session, user: User, invitee_id: str, challenge_id: int) -> dict:
    if invitee_id == user.id:
        raise ValidationError("No puedes invitarte a ti mismo")

    invitee = db.query(User).filter(User.id == invitee_id).first()
    if not invitee:
        raise NotFound("Usuario invitado no encontrado")

    challenge = db.query(Challenge).filter(
        Challenge.id == challenge_id,
        Challenge.type == ChallengeType.social.value,
        Challenge.is_active == True,
    ).first()
    if not challenge:
        raise NotFound("Reto no encontrado")

    with db_operation(db, "Error al crear reto social"):
        session = SocialSession(
            inviter_id=user.id,
            invitee_id=invitee_id,
            challenge_id=challenge_id,
            status=SocialSessionStatus.pending.value,
        )
        db.add(session)
        db.flush()
        create_notification(
            db, invitee_id, NotificationType.social, "Invitación a reto social",
            "Te han invitado a un reto social",
            {
                "type": "social_challenge_invite",
                "inviterId": user.id,
                "challengeId": challenge_id,
                "sessionId": session.id,
            },
        )
        db.commit()
        db.refresh(session)

    logger.info(f"🤝 Reto social: {user.id} invitó a {invitee_id} (sesión {session.id})")
    return {"success": True, "session": serialize_social_session(session)}


def accept_social_challenge(db: Session, user: User, session_id: int, now: datetime = None) -> dict:
    session = db.query(SocialSession).filter(
        SocialSession.id == session_id,
        SocialSession.invitee_id == user.id,
    ).first()
    if not session:
        raise NotFound("Invitación no encontrada")
    if session.status != SocialSessionStatus.pending.value:
        raise InvalidState("Esta invitación ya fue respondida")

    with db_operation(db, "Error al aceptar la invitación"):
        session.status = SocialSessionStatus.in_progress.value
        session.accepted_at = now or datetime.utcnow()
        create_notification(
            db, session.inviter_id, NotificationType.social, "Reto aceptado",
            "Tu invitación a reto social fue aceptada",
            {"type": "social_challenge_accepted", "inviteeId": user.id, "sessionId": session.id},
        )
        db.commit()

    return {"success": True, "message": "Invitación aceptada"}
