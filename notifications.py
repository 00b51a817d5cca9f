"""
=============================================================================
NOTIFICATIONS.PY — Notificaciones in-app
=============================================================================
Función centralizada para crear notificaciones, igual para todos los
módulos (retos, feed, seguidores, retos sociales).

No hace commit: la notificación se guarda junto con la operación que la
provoca.
"""

import logging
from sqlalchemy.orm import Session

from models import Notification, NotificationType

logger = logging.getLogger("calixo.notifications")


def create_notification(
    db: Session,
    user_id: str,
    type: NotificationType,
    title: str,
    message: str = None,
    payload: dict = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=NotificationType(type).value,
        title=title,
        message=message,
        payload=payload or {},
        seen=False,
    )
    db.add(notification)
    logger.info(f"🔔 Notificación '{title}' → {user_id}")
    return notification


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "payload": notification.payload or {},
        "seen": notification.seen,
        "createdAt": notification.created_at,
    }
