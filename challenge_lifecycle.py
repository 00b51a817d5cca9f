"""
=============================================================================
CHALLENGE_LIFECYCLE.PY — Ciclo de vida de un reto
=============================================================================
Estados de un UserChallenge:

  in_progress ──finish──→ finished ──claim──→ completed (+ shared al compartir)
       │                     │
     cancel           (pasa el día sin reclamar)
       ↓                     ↓
    canceled            not_claimed

Reglas:
  - Solo UN reto in_progress por usuario a la vez
  - Límite diario: 1 reto (gratis) o 3 (premium), sin contar cancelados
    ni no reclamados
  - "finish" lo dispara el cliente cuando su timer llega a cero
    ("sistema de confianza"); el servidor no lleva ningún timer
  - "claim" entrega la recompensa base UNA sola vez: la transición se hace
    con un UPDATE condicional (WHERE status='finished'), así dos peticiones
    simultáneas no pueden cobrar dos veces
  - Compartir en el feed da 2 monedas extra, una vez por reto

Cada operación recibe el usuario autenticado de forma explícita.
"""

import logging
import os
from datetime import datetime

from sqlalchemy.orm import Session

from daily_challenges import (
    BUCKET_DEFAULT_DURATIONS, daily_seed, day_window_utc, get_date_key,
    get_date_key_for_timestamp, select_daily_challenges
)
from errors import InvalidState, NotFound, QuotaExceeded, ValidationError, db_operation
from gamification import (
    DEFAULT_FOCUS_MINUTES, FOCUS_MAX_MINUTES, FOCUS_MIN_MINUTES, SHARE_BONUS, calculate_base_reward,
    daily_limit_reason, max_daily_challenges, record_transaction,
    update_energy_on_challenge_complete
)
from models import (
    Challenge, ChallengeStatus, ChallengeType, FeedItem, FocusSession,
    NotificationType, TransactionType, User, UserChallenge
)
from notifications import create_notification, serialize_notification
from social import serialize_feed_item

logger = logging.getLogger("calixo.challenges")

ENFORCE_SERVER_TIMER = os.getenv("CALIXO_ENFORCE_SERVER_TIMER", "false").lower() in ("1", "true", "yes")
# Por defecto se confía en el timer del cliente. Con esta opción el servidor
# exige que haya pasado la duración desde started_at.


# =============================================================================
# ===================== MÁQUINA DE ESTADOS ====================================
# =============================================================================

VALID_TRANSITIONS = {
    "in_progress": ["finished", "canceled"],
    "finished": ["completed", "not_claimed"],
    "completed": [],
    "canceled": [],
    "not_claimed": [],
}

QUOTA_EXCLUDED_STATUSES = (ChallengeStatus.canceled.value, ChallengeStatus.not_claimed.value)


def can_transition(current: str, target: str) -> bool:
    return target in VALID_TRANSITIONS.get(current, [])


def validate_transition(current: str, target: str, message: str = None):
    """Lanza InvalidState si no se puede pasar de `current` a `target`"""
    if not can_transition(current, target):
        raise InvalidState(message or f"No se puede pasar un reto de '{current}' a '{target}'")


def _conditional_update(db: Session, user_challenge_id: int, expected_status: str, values: dict, message: str):
    """
    UPDATE user_challenges SET ... WHERE id = :id AND status = :expected
    Si no se actualiza ninguna fila, otra petición se adelantó.
    """
    updated = db.query(UserChallenge).filter(
        UserChallenge.id == user_challenge_id,
        UserChallenge.status == expected_status,
    ).update(values, synchronize_session=False)

    if updated != 1:
        db.rollback()
        raise InvalidState(message)


# =============================================================================
# ===================== SERIALIZACIÓN =========================================
# =============================================================================

def serialize_challenge(challenge: Challenge) -> dict:
    return {
        "id": challenge.id,
        "type": challenge.type,
        "title": challenge.title,
        "description": challenge.description,
        "reward": challenge.reward,
        "durationMinutes": challenge.duration_minutes,
        "isActive": challenge.is_active,
        "createdAt": challenge.created_at,
    }


def serialize_user_challenge(uc: UserChallenge) -> dict:
    return {
        "id": uc.id,
        "userId": uc.user_id,
        "challengeId": uc.challenge_id,
        "status": uc.status,
        "startedAt": uc.started_at,
        "finishedAt": uc.finished_at,
        "claimedAt": uc.claimed_at,
        "completedAt": uc.completed_at,
        "canceledAt": uc.canceled_at,
        "sessionData": uc.session_data or {},
        "shared": bool(uc.shared),
    }


def effective_duration(challenge: Challenge, session_data: dict = None) -> int:
    """Duración en minutos: la elegida al empezar (Focus) o la del catálogo"""
    duration = (session_data or {}).get("durationMinutes")
    if duration:
        return duration
    return challenge.duration_minutes or BUCKET_DEFAULT_DURATIONS["short"]


# =============================================================================
# ===================== CONSULTAS =============================================
# =============================================================================

def _get_user_challenge(db: Session, user: User, user_challenge_id: int) -> UserChallenge:
    uc = db.query(UserChallenge).filter(
        UserChallenge.id == user_challenge_id,
        UserChallenge.user_id == user.id,
    ).first()
    if not uc:
        raise NotFound("Reto no encontrado")
    return uc


def _get_challenge(db: Session, challenge_id: int, active_only: bool = False) -> Challenge:
    query = db.query(Challenge).filter(Challenge.id == challenge_id)
    if active_only:
        query = query.filter(Challenge.is_active == True)
    challenge = query.first()
    if not challenge:
        raise NotFound("Reto no encontrado")
    return challenge


def _in_progress_for(db: Session, user: User):
    return db.query(UserChallenge).filter(
        UserChallenge.user_id == user.id,
        UserChallenge.status == ChallengeStatus.in_progress.value,
    ).all()


def get_quota_status(db: Session, user: User, now: datetime = None) -> tuple:
    """
    (retos de hoy, límite). Cuentan los creados en el día actual
    (de 2:00 a 2:00, hora de Madrid) que no estén cancelados ni sin reclamar.
    """
    start, end = day_window_utc(get_date_key(now))
    count = db.query(UserChallenge).filter(
        UserChallenge.user_id == user.id,
        UserChallenge.created_at >= start,
        UserChallenge.created_at < end,
        UserChallenge.status.notin_(QUOTA_EXCLUDED_STATUSES),
    ).count()
    return count, max_daily_challenges(user)


def list_challenges(db: Session, user: User, type: str = None, now: datetime = None) -> dict:
    """
    Retos disponibles para el usuario.

    Para type="daily" se aplica la selección diaria determinista con la
    semilla "<día>-<user_id>". Los retos que el usuario tiene en curso no
    se devuelven.
    """
    query = db.query(Challenge).filter(Challenge.is_active == True)
    if type:
        query = query.filter(Challenge.type == type)
    challenges = query.order_by(Challenge.id).all()

    if type == ChallengeType.daily.value:
        date_key = get_date_key(now)
        challenges = select_daily_challenges(challenges, daily_seed(date_key, user.id))

    in_progress = _in_progress_for(db, user)
    active_ids = {uc.challenge_id for uc in in_progress}
    if active_ids:
        challenges = [c for c in challenges if c.id not in active_ids]

    todays_count, max_daily = get_quota_status(db, user, now)

    result = []
    for challenge in challenges:
        can_start = True
        reason = ""
        if in_progress:
            can_start = False
            reason = "Ya tienes un reto en curso"
        elif challenge.type == ChallengeType.daily.value and todays_count >= max_daily:
            can_start = False
            reason = daily_limit_reason(user)
        elif challenge.type == ChallengeType.focus.value and not user.is_premium:
            can_start = False
            reason = "El modo Focus es solo para usuarios Premium"

        item = serialize_challenge(challenge)
        item["canStart"] = can_start
        item["reason"] = reason
        result.append(item)

    response = {
        "challenges": result,
        "userProfile": {
            "isPremium": bool(user.is_premium),
            "maxDailyChallenges": max_daily,
            "todaysChallengesCount": todays_count,
        },
    }

    if type in (ChallengeType.daily.value, ChallengeType.focus.value):
        focus = db.query(Challenge).filter(
            Challenge.type == ChallengeType.focus.value,
            Challenge.is_active == True,
        ).order_by(Challenge.id).first()
        if focus:
            response["focusChallenge"] = serialize_challenge(focus)

    return response


def get_active_challenge(db: Session, user: User):
    """El intento más reciente en curso o terminado (pendiente de reclamar)"""
    uc = db.query(UserChallenge).filter(
        UserChallenge.user_id == user.id,
        UserChallenge.status.in_([ChallengeStatus.in_progress.value, ChallengeStatus.finished.value]),
    ).order_by(UserChallenge.started_at.desc(), UserChallenge.id.desc()).first()

    if not uc:
        return None

    challenge = db.query(Challenge).filter(Challenge.id == uc.challenge_id).first()
    if not challenge:
        return None

    return {
        "id": uc.id,
        "challengeId": challenge.id,
        "challengeTitle": challenge.title,
        "challengeType": challenge.type,
        "status": uc.status,
        "startedAt": uc.started_at,
        "finishedAt": uc.finished_at,
        "durationMinutes": (
            (uc.session_data or {}).get("durationMinutes")
            or challenge.duration_minutes
            or DEFAULT_FOCUS_MINUTES
        ),
        "reward": challenge.reward,
    }


# =============================================================================
# ===================== START =================================================
# =============================================================================

def start_challenge(
    db: Session, user: User, challenge_id: int,
    custom_duration: int = None, now: datetime = None
) -> dict:
    """
    Empieza un reto.

    Rechaza si:
      - El reto no existe o está desactivado → 404
      - Ya hay un reto en curso → 400
      - (daily) Se alcanzó el límite del día → 400
      - (focus) No es premium o la duración no está entre 1 y 5 horas → 400
    """
    challenge = _get_challenge(db, challenge_id, active_only=True)
    now = now or datetime.utcnow()

    if _in_progress_for(db, user):
        raise InvalidState("Ya tienes un reto en curso. Termínalo o cancélalo antes de empezar otro.")

    if challenge.type == ChallengeType.daily.value:
        todays_count, max_daily = get_quota_status(db, user, now)
        if todays_count >= max_daily:
            raise QuotaExceeded(daily_limit_reason(user))

    if challenge.type == ChallengeType.focus.value:
        if not user.is_premium:
            raise ValidationError("El modo Focus es solo para usuarios Premium")
        if custom_duration is None:
            raise ValidationError("Elige la duración del modo Focus")
        if not FOCUS_MIN_MINUTES <= custom_duration <= FOCUS_MAX_MINUTES:
            raise ValidationError(
                f"La duración del modo Focus debe estar entre {FOCUS_MIN_MINUTES} y {FOCUS_MAX_MINUTES} minutos"
            )
        duration = custom_duration
    else:
        duration = effective_duration(challenge)

    uc = UserChallenge(
        user_id=user.id,
        challenge_id=challenge.id,
        status=ChallengeStatus.in_progress.value,
        started_at=now,
        session_data={"durationMinutes": duration},
        shared=False,
        created_at=now,
    )

    with db_operation(db, "Error al iniciar el reto"):
        db.add(uc)
        db.commit()
        db.refresh(uc)

    logger.info(f"▶️ Reto iniciado: '{challenge.title}' ({duration} min) por {user.id}")

    return {
        "success": True,
        "userChallenge": serialize_user_challenge(uc),
        "challenge": serialize_challenge(challenge),
    }


# =============================================================================
# ===================== FINISH ================================================
# =============================================================================

def finish_challenge(
    db: Session, user: User, user_challenge_id: int,
    session_data: dict = None, now: datetime = None
) -> dict:
    """
    El timer del cliente llegó a cero: in_progress → finished.

    Los datos de sesión del cliente (durationSeconds, interruptions,
    startTime, endTime) se añaden a los guardados al empezar. La duración
    elegida (durationMinutes) no la puede cambiar el cliente.
    """
    uc = _get_user_challenge(db, user, user_challenge_id)
    validate_transition(uc.status, ChallengeStatus.finished.value, "Este reto no está en progreso")
    challenge = _get_challenge(db, uc.challenge_id)
    now = now or datetime.utcnow()

    if ENFORCE_SERVER_TIMER and uc.started_at:
        elapsed = (now - uc.started_at).total_seconds()
        if elapsed < effective_duration(challenge, uc.session_data) * 60:
            raise InvalidState("El reto todavía no ha terminado")

    merged = dict(uc.session_data or {})
    for key, value in (session_data or {}).items():
        if key != "durationMinutes":
            merged[key] = value

    with db_operation(db, "Error al finalizar el reto"):
        _conditional_update(
            db, uc.id, ChallengeStatus.in_progress.value,
            {
                UserChallenge.status: ChallengeStatus.finished.value,
                UserChallenge.finished_at: now,
                UserChallenge.session_data: merged,
            },
            "Este reto no está en progreso",
        )
        db.commit()
        db.refresh(uc)

    logger.info(f"⏹️ Reto finalizado: '{challenge.title}' (user_challenge {uc.id})")

    return {
        "success": True,
        "userChallenge": serialize_user_challenge(uc),
        "challenge": serialize_challenge(challenge),
    }


# =============================================================================
# ===================== CLAIM =================================================
# =============================================================================

def claim_challenge(db: Session, user: User, user_challenge_id: int, now: datetime = None) -> dict:
    """
    Reclama un reto terminado: finished → completed y se entregan las
    monedas base.

    Todo va en UNA transacción de BD:
      1. UPDATE condicional del estado (si otra petición ya lo reclamó → 400)
      2. Monedas, racha y energía del usuario
      3. Fila en el libro de transacciones
      4. (focus) Registro de la sesión de concentración
    """
    uc = _get_user_challenge(db, user, user_challenge_id)
    not_finished = "Este reto no está finalizado. Solo puedes reclamar retos que hayan terminado."
    validate_transition(uc.status, ChallengeStatus.completed.value, not_finished)
    challenge = _get_challenge(db, uc.challenge_id)
    now = now or datetime.utcnow()

    session_data = uc.session_data or {}
    base_reward = calculate_base_reward(challenge, session_data)
    new_energy = update_energy_on_challenge_complete(user.avatar_energy, challenge.type)

    with db_operation(db, "Error al reclamar el reto"):
        _conditional_update(
            db, uc.id, ChallengeStatus.finished.value,
            {
                UserChallenge.status: ChallengeStatus.completed.value,
                UserChallenge.claimed_at: now,
                UserChallenge.completed_at: now,
                UserChallenge.shared: False,
            },
            not_finished,
        )

        db.query(User).filter(User.id == user.id).update({
            User.coins: User.coins + base_reward,
            User.streak: User.streak + 1,
            User.avatar_energy: new_energy,
            User.updated_at: now,
        }, synchronize_session=False)

        record_transaction(
            db, user.id, base_reward, TransactionType.earn.value,
            f"Reto completado: {challenge.title}",
            challenge_id=challenge.id,
        )

        if challenge.type == ChallengeType.focus.value:
            db.add(FocusSession(
                user_challenge_id=uc.id,
                duration_seconds=session_data.get("durationSeconds") or 0,
                interruptions=session_data.get("interruptions") or 0,
                completed_successfully=True,
            ))

        db.commit()
        db.refresh(uc)
        db.refresh(user)

    logger.info(f"🪙 Reto reclamado: '{challenge.title}' → +{base_reward} monedas para {user.id}")

    return {
        "success": True,
        "userChallenge": serialize_user_challenge(uc),
        "challenge": serialize_challenge(challenge),
        "coinsEarned": base_reward,
        "baseReward": base_reward,
        "shareBonus": 0,
        "shared": False,
        "newCoins": user.coins,
        "newStreak": user.streak,
        "newEnergy": user.avatar_energy,
    }


# =============================================================================
# ===================== SHARE (bonus) =========================================
# =============================================================================

def share_challenge(
    db: Session, user: User, user_challenge_id: int,
    image_url: str = None, note: str = None, now: datetime = None
) -> dict:
    """
    Publica un reto completado en el feed y da SHARE_BONUS monedas.
    Solo una vez por reto: el flag `shared` se pone con un UPDATE condicional.
    """
    uc = _get_user_challenge(db, user, user_challenge_id)
    if uc.status != ChallengeStatus.completed.value:
        raise InvalidState("Solo puedes compartir retos completados")
    if uc.shared:
        raise InvalidState("Este reto ya se ha compartido")
    challenge = _get_challenge(db, uc.challenge_id)
    now = now or datetime.utcnow()

    with db_operation(db, "Error al completar el reto"):
        updated = db.query(UserChallenge).filter(
            UserChallenge.id == uc.id,
            UserChallenge.status == ChallengeStatus.completed.value,
            UserChallenge.shared.isnot(True),
        ).update({UserChallenge.shared: True}, synchronize_session=False)
        if updated != 1:
            db.rollback()
            raise InvalidState("Este reto ya se ha compartido")

        feed_item = FeedItem(
            user_challenge_id=uc.id,
            user_id=user.id,
            image_url=image_url,
            note=note,
            likes_count=0,
            created_at=now,
        )
        db.add(feed_item)

        db.query(User).filter(User.id == user.id).update({
            User.coins: User.coins + SHARE_BONUS,
            User.updated_at: now,
        }, synchronize_session=False)

        record_transaction(
            db, user.id, SHARE_BONUS, TransactionType.earn.value,
            f"Bonus por compartir: {challenge.title}",
            challenge_id=challenge.id,
        )

        db.commit()
        db.refresh(feed_item)
        db.refresh(user)

    logger.info(f"📸 Reto compartido: '{challenge.title}' → +{SHARE_BONUS} monedas para {user.id}")

    return {
        "success": True,
        "coinsEarned": SHARE_BONUS,
        "shareBonus": SHARE_BONUS,
        "newCoins": user.coins,
        "feedItem": serialize_feed_item(feed_item),
    }


def skip_share(db: Session, user: User, user_challenge_id: int) -> dict:
    """El usuario cerró el aviso de compartir: se le deja un recordatorio"""
    uc = _get_user_challenge(db, user, user_challenge_id)
    if uc.status != ChallengeStatus.completed.value or uc.shared:
        raise InvalidState("Este reto no está pendiente de compartir")
    challenge = _get_challenge(db, uc.challenge_id)

    with db_operation(db, "Error al crear el recordatorio"):
        notification = create_notification(
            db, user.id, NotificationType.challenge,
            "¿Olvidaste compartir tu desconexión?",
            f'Comparte "{challenge.title}" para ganar {SHARE_BONUS} monedas extra',
            {
                "type": "share_reminder",
                "userChallengeId": uc.id,
                "challengeTitle": challenge.title,
            },
        )
        db.commit()
        db.refresh(notification)

    return {"success": True, "notification": serialize_notification(notification)}


# =============================================================================
# ===================== CANCEL ================================================
# =============================================================================

def cancel_challenge(db: Session, user: User, user_challenge_id: int, now: datetime = None) -> dict:
    """Abandona un reto en curso. Sin recompensa; la fila se conserva."""
    uc = _get_user_challenge(db, user, user_challenge_id)
    validate_transition(uc.status, ChallengeStatus.canceled.value, "Solo puedes cancelar un reto en curso")
    now = now or datetime.utcnow()

    with db_operation(db, "Error al cancelar el reto"):
        _conditional_update(
            db, uc.id, ChallengeStatus.in_progress.value,
            {
                UserChallenge.status: ChallengeStatus.canceled.value,
                UserChallenge.canceled_at: now,
            },
            "Solo puedes cancelar un reto en curso",
        )
        db.commit()

    logger.info(f"✖️ Reto cancelado: user_challenge {uc.id} ({user.id})")
    return {"success": True, "message": "Reto cancelado"}


# =============================================================================
# ===================== CADUCIDAD (scheduler) =================================
# =============================================================================

def expire_unclaimed(db: Session, now: datetime = None) -> int:
    """
    Los retos terminados en un día anterior y no reclamados pasan a
    not_claimed. Devuelve cuántos se han caducado.
    """
    today = get_date_key(now)
    finished = db.query(UserChallenge).filter(
        UserChallenge.status == ChallengeStatus.finished.value
    ).all()

    expired = 0
    for uc in finished:
        finished_at = uc.finished_at or uc.started_at or uc.created_at
        if get_date_key_for_timestamp(finished_at) >= today:
            continue

        validate_transition(uc.status, ChallengeStatus.not_claimed.value)
        uc.status = ChallengeStatus.not_claimed.value
        title = uc.challenge.title if uc.challenge else "tu reto"
        create_notification(
            db, uc.user_id, NotificationType.challenge,
            "Reto sin reclamar",
            f'No reclamaste "{title}" a tiempo. ¡Hoy tienes nuevos retos!',
            {"type": "challenge_not_claimed", "userChallengeId": uc.id},
        )
        expired += 1

    db.commit()
    if expired:
        logger.info(f"⌛ {expired} retos marcados como no reclamados")
    return expired
