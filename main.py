"""
=============================================================================
MAIN.PY — La API de Calixo
=============================================================================
Este archivo define TODOS los endpoints de la API REST.

Organización por secciones:
  1. RETOS          → Listar, empezar, terminar, reclamar, compartir, cancelar
  2. RETOS SOCIALES → Invitar y aceptar
  3. NOTIFICACIONES → Bandeja in-app
  4. FEED           → Publicaciones y likes
  5. PERFIL         → Perfil propio / público, seguidores
  6. TIENDA         → Cupones y libro de monedas
  7. ADMIN          → Catálogo de retos, cupones y Premium

Todas las rutas (salvo el health check) necesitan un token de sesión.
Los errores se devuelven como {"error": "<mensaje>"}.
"""

import os
import logging
import traceback
from datetime import datetime
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import admin
import challenge_lifecycle
import profiles
import social
import store
from auth import get_current_user, require_admin
from database import get_db, init_db, session_scope
from errors import CalixoError, NotFound, db_operation
from gamification import get_coin_summary, seed_challenges
from models import Notification, Transaction, User
from notifications import create_notification, serialize_notification
from schemas import (
    ChallengeCreate, ChallengeUpdate, CompleteShareRequest, CouponCreate,
    FinishChallengeRequest, NotificationCreate, PremiumUpdate, ProfileUpdate,
    PurchaseRequest, SocialInviteRequest, StartChallengeRequest, UserChallengeRequest
)

# ─────────────────────────────────────────────────────────────────────────────
# LOGGING
# ─────────────────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
)
logger = logging.getLogger("calixo.api")

ENABLE_SCHEDULER = os.getenv("CALIXO_ENABLE_SCHEDULER", "true").lower() in ("1", "true", "yes")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


# ─────────────────────────────────────────────────────────────────────────────
# LIFESPAN (Arranque y apagado)
# ─────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Arranque:
      1. Inicializar BD (crear tablas)
      2. Catálogo inicial de retos
      3. Scheduler de retos sin reclamar

    Apagado:
      - Parar el scheduler
    """
    logger.info("🚀 Arrancando Calixo API...")

    init_db()
    logger.info("✅ Base de datos inicializada")

    with session_scope() as db:
        seed_challenges(db)

    scheduler_started = False
    if ENABLE_SCHEDULER:
        from scheduler import create_scheduler, start_scheduler
        create_scheduler()
        start_scheduler()
        scheduler_started = True
    else:
        logger.warning("⚠️ Scheduler desactivado (CALIXO_ENABLE_SCHEDULER)")

    logger.info("🎉 Calixo API operativa")

    yield

    logger.info("🛑 Apagando Calixo API...")
    if scheduler_started:
        from scheduler import stop_scheduler
        stop_scheduler()
    logger.info("👋 Apagado completo")


# ─────────────────────────────────────────────────────────────────────────────
# APLICACIÓN FASTAPI
# ─────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Calixo API",
    description="Retos de desconexión digital: retos diarios, modo Focus, monedas y feed",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS → la web (otro dominio) hace peticiones a esta API
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─────────────────────────────────────────────────────────────────────────────
# ERRORES
# ─────────────────────────────────────────────────────────────────────────────

@app.exception_handler(CalixoError)
async def calixo_error_handler(request: Request, exc: CalixoError):
    """Errores de negocio → {"error": mensaje} con su código HTTP"""
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Cualquier error no previsto: se registra entero y se responde 500"""
    logger.error(f"❌ Error no manejado en {request.url}: {exc}\n{traceback.format_exc()}")
    return JSONResponse(status_code=500, content={"error": "Error interno del servidor"})


# =============================================================================
# ===================== HEALTH CHECK ==========================================
# =============================================================================

@app.get("/", tags=["Health"])
def health_check():
    """Verifica que la API está viva"""
    return {
        "status": "ok",
        "app": "Calixo API",
        "version": "1.0.0",
        "timestamp": datetime.utcnow().isoformat()
    }


# =============================================================================
# ===================== SECCIÓN 1: RETOS ======================================
# =============================================================================

@app.get("/api/challenges", tags=["Challenges"])
def list_challenges(
    type: Optional[str] = Query(default=None, pattern=r"^(daily|focus|social)$"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Retos disponibles. Con ?type=daily devuelve los 3 del día
    (corto, medio, largo) y además el reto Focus.
    """
    return challenge_lifecycle.list_challenges(db, user, type)


@app.get("/api/challenges/active", tags=["Challenges"])
def get_active_challenge(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """El reto en curso o pendiente de reclamar (para reanudar el timer)"""
    return {"activeChallenge": challenge_lifecycle.get_active_challenge(db, user)}


@app.post("/api/challenges/start", tags=["Challenges"])
def start_challenge(
    data: StartChallengeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return challenge_lifecycle.start_challenge(db, user, data.challenge_id, data.custom_duration)


@app.post("/api/challenges/finish", tags=["Challenges"])
def finish_challenge(
    data: FinishChallengeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """El timer del cliente llegó a cero"""
    return challenge_lifecycle.finish_challenge(db, user, data.user_challenge_id, data.session_data)


@app.post("/api/challenges/claim", tags=["Challenges"])
def claim_challenge(
    data: UserChallengeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Entrega las monedas base de un reto terminado"""
    return challenge_lifecycle.claim_challenge(db, user, data.user_challenge_id)


@app.post("/api/challenges/complete", tags=["Challenges"])
def complete_share(
    data: CompleteShareRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Comparte un reto completado en el feed (+2 monedas)"""
    return challenge_lifecycle.share_challenge(db, user, data.user_challenge_id, data.image_url, data.note)


@app.post("/api/challenges/share/skip", tags=["Challenges"])
def skip_share(
    data: UserChallengeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return challenge_lifecycle.skip_share(db, user, data.user_challenge_id)


@app.post("/api/challenges/cancel", tags=["Challenges"])
def cancel_challenge(
    data: UserChallengeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return challenge_lifecycle.cancel_challenge(db, user, data.user_challenge_id)


# =============================================================================
# ===================== SECCIÓN 2: RETOS SOCIALES =============================
# =============================================================================

@app.get("/api/challenges/social", tags=["Social Challenges"])
def list_social_challenges(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"sessions": social.list_social_sessions(db, user)}


@app.post("/api/challenges/social", tags=["Social Challenges"])
def invite_social_challenge(
    data: SocialInviteRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return social.invite_to_social_challenge(db, user, data.invitee_id, data.challenge_id)


@app.post("/api/challenges/social/{session_id}/accept", tags=["Social Challenges"])
def accept_social_challenge(
    session_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return social.accept_social_challenge(db, user, session_id)


# =============================================================================
# ===================== SECCIÓN 3: NOTIFICACIONES =============================
# =============================================================================

def _get_own_notification(db: Session, user: User, notification_id: int) -> Notification:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user.id
    ).first()
    if not notification:
        raise NotFound("Notificación no encontrada")
    return notification


@app.get("/api/notifications", tags=["Notifications"])
def list_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    notifications = db.query(Notification).filter(
        Notification.user_id == user.id
    ).order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()

    unseen = db.query(Notification).filter(
        Notification.user_id == user.id,
        Notification.seen == False
    ).count()

    return {
        "notifications": [serialize_notification(n) for n in notifications],
        "unseenCount": unseen,
    }


@app.post("/api/notifications", tags=["Notifications"])
def create_own_notification(
    data: NotificationCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """El propio usuario se deja una notificación (recordatorios del cliente)"""
    with db_operation(db, "Error al crear la notificación"):
        notification = create_notification(db, user.id, data.type, data.title, data.message, data.payload)
        db.commit()
        db.refresh(notification)
    return serialize_notification(notification)


@app.patch("/api/notifications/seen", tags=["Notifications"])
def mark_all_notifications_seen(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    with db_operation(db, "Error al marcar las notificaciones"):
        updated = db.query(Notification).filter(
            Notification.user_id == user.id,
            Notification.seen == False
        ).update({Notification.seen: True}, synchronize_session=False)
        db.commit()
    return {"success": True, "updated": updated}


@app.patch("/api/notifications/{notification_id}/seen", tags=["Notifications"])
def mark_notification_seen(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    notification = _get_own_notification(db, user, notification_id)
    with db_operation(db, "Error al marcar la notificación"):
        notification.seen = True
        db.commit()
        db.refresh(notification)
    return serialize_notification(notification)


@app.delete("/api/notifications/{notification_id}", tags=["Notifications"])
def delete_notification(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    notification = _get_own_notification(db, user, notification_id)
    with db_operation(db, "Error al borrar la notificación"):
        db.delete(notification)
        db.commit()
    return {"success": True}


# =============================================================================
# ===================== SECCIÓN 4: FEED =======================================
# =============================================================================

@app.get("/api/feed", tags=["Feed"])
def get_feed(
    limit: int = Query(default=social.FEED_PAGE_SIZE, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return {"items": social.get_feed(db, user, limit, offset)}


@app.post("/api/feed/{feed_item_id}/like", tags=["Feed"])
def like_feed_item(
    feed_item_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return social.toggle_like(db, user, feed_item_id)


@app.get("/api/feed/{feed_item_id}", tags=["Feed"])
def get_feed_item(
    feed_item_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return social.get_feed_item(db, user, feed_item_id)


# =============================================================================
# ===================== SECCIÓN 5: PERFIL =====================================
# =============================================================================

@app.get("/api/profile", tags=["Profile"])
def get_my_profile(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return profiles.get_own_profile(db, user)


@app.patch("/api/profile", tags=["Profile"])
def update_my_profile(
    data: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return profiles.update_profile(db, user, data.display_name, data.is_private)


@app.get("/api/profile/{user_id}", tags=["Profile"])
def get_user_profile(user_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return profiles.get_public_profile(db, user, user_id)


@app.post("/api/profile/{user_id}/follow", tags=["Profile"])
def follow_user(user_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Seguir / dejar de seguir"""
    return social.toggle_follow(db, user, user_id)


@app.get("/api/profile/{user_id}/followers", tags=["Profile"])
def get_followers(user_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"users": social.list_followers(db, user_id)}


@app.get("/api/profile/{user_id}/following", tags=["Profile"])
def get_following(user_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"users": social.list_following(db, user_id)}


@app.get("/api/profile/{user_id}/feed", tags=["Profile"])
def get_user_feed(
    user_id: str,
    limit: int = Query(default=social.FEED_PAGE_SIZE, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Publicaciones de un perfil (403 si es privado y no lo sigues)"""
    return social.get_user_feed(db, user, user_id, limit, offset)


# =============================================================================
# ===================== SECCIÓN 6: TIENDA Y MONEDAS ===========================
# =============================================================================

@app.get("/api/store", tags=["Store"])
def list_store(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return store.list_store(db, user)


@app.post("/api/store/purchase", tags=["Store"])
def purchase_coupon(
    data: PurchaseRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return store.purchase_coupon(db, user, data.coupon_id)


@app.get("/api/store/purchased", tags=["Store"])
def list_purchased(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"coupons": store.list_purchased(db, user)}


@app.get("/api/transactions", tags=["Store"])
def list_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Historial de monedas (más recientes primero) y totales"""
    transactions = db.query(Transaction).filter(
        Transaction.user_id == user.id
    ).order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(limit).all()

    return {
        "transactions": [
            {
                "id": t.id,
                "amount": t.amount,
                "type": t.type,
                "description": t.description,
                "challengeId": t.challenge_id,
                "couponCode": t.coupon_code,
                "createdAt": t.created_at,
            }
            for t in transactions
        ],
        "summary": get_coin_summary(db, user.id),
        "coins": user.coins,
    }


# =============================================================================
# ===================== SECCIÓN 7: ADMIN ======================================
# =============================================================================

@app.get("/api/admin/challenges", tags=["Admin"])
def admin_list_challenges(user: User = Depends(require_admin), db: Session = Depends(get_db)):
    return {"challenges": admin.list_all_challenges(db)}


@app.post("/api/admin/challenges", tags=["Admin"])
def admin_create_challenge(
    data: ChallengeCreate,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return admin.create_challenge(db, data.model_dump())


@app.patch("/api/admin/challenges/{challenge_id}", tags=["Admin"])
def admin_update_challenge(
    challenge_id: int,
    data: ChallengeUpdate,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return admin.update_challenge(db, challenge_id, data.model_dump(exclude_unset=True))


@app.post("/api/admin/coupons", tags=["Admin"])
def admin_create_coupon(
    data: CouponCreate,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return admin.create_coupon(db, data.model_dump())


@app.put("/api/admin/users/{user_id}/premium", tags=["Admin"])
def admin_set_premium(
    user_id: str,
    data: PremiumUpdate,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Activa o quita Premium (no caduca solo)"""
    return admin.set_premium(db, user_id, data.is_premium)
