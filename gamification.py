"""
=============================================================================
GAMIFICATION.PY — Monedas, energía del avatar y límites
=============================================================================
Gestiona:
  - Recompensas en monedas (base del reto, Focus por horas, bonus por compartir)
  - Energía del avatar (sube al completar retos)
  - Límites diarios (gratis vs premium)
  - Libro de transacciones (earn / spend)
  - Catálogo inicial de retos

Todas las cantidades de monedas son enteros.
"""

import logging
import math

from sqlalchemy.orm import Session

from models import Challenge, ChallengeType, Transaction, TransactionType, User

logger = logging.getLogger("calixo.gamification")


# =============================================================================
# ===================== LÍMITES Y RECOMPENSAS =================================
# =============================================================================

DAILY_LIMIT_FREE = 1
DAILY_LIMIT_PREMIUM = 3

SHARE_BONUS = 2
# SHARE_BONUS → monedas extra por compartir el reto en el feed

COINS_PER_FOCUS_HOUR = 1
FOCUS_MIN_MINUTES = 60
FOCUS_MAX_MINUTES = 300
# Focus: de 1 a 5 horas, solo premium

DEFAULT_FOCUS_MINUTES = 60


def max_daily_challenges(user: User) -> int:
    """Retos diarios permitidos: 1 gratis, 3 premium"""
    return DAILY_LIMIT_PREMIUM if user.is_premium else DAILY_LIMIT_FREE


def daily_limit_reason(user: User) -> str:
    if user.is_premium:
        return f"Has alcanzado el límite de retos diarios ({DAILY_LIMIT_PREMIUM})"
    return (
        f"Has alcanzado el límite de retos diarios gratuitos ({DAILY_LIMIT_FREE}). "
        "Actualiza a Premium para más retos."
    )


def calculate_base_reward(challenge: Challenge, session_data: dict = None) -> int:
    """
    Monedas que se ganan al reclamar un reto.

      - Retos normales → challenge.reward
      - Focus → 1 moneda por hora COMPLETA (119 min = 1, 59 min = 0)
    """
    if challenge.type == ChallengeType.focus.value:
        duration_minutes = (session_data or {}).get("durationMinutes") or DEFAULT_FOCUS_MINUTES
        return math.floor(duration_minutes / 60) * COINS_PER_FOCUS_HOUR
    return challenge.reward or 0


# =============================================================================
# ===================== ENERGÍA DEL AVATAR ====================================
# =============================================================================

MAX_ENERGY = 100
MIN_ENERGY = 0

ENERGY_GAINS = {
    "daily": 10,
    "focus": 15,
    "social": 20,
}

ENERGY_LEVELS = {
    70: "alta",
    40: "media",
    0: "baja",
}


def update_energy_on_challenge_complete(current_energy: int, challenge_type: str) -> int:
    """Nueva energía tras completar un reto (siempre entre 0 y 100)"""
    gain = ENERGY_GAINS.get(challenge_type, 0)
    energy = (current_energy if current_energy is not None else MAX_ENERGY) + gain
    return max(MIN_ENERGY, min(MAX_ENERGY, energy))


def get_energy_level(energy: int) -> str:
    """'alta' (≥70), 'media' (≥40) o 'baja'"""
    for threshold, level in sorted(ENERGY_LEVELS.items(), reverse=True):
        if energy >= threshold:
            return level
    return "baja"


# =============================================================================
# ===================== LIBRO DE TRANSACCIONES ================================
# =============================================================================

def record_transaction(
    db: Session,
    user_id: str,
    amount: int,
    type: str,
    description: str,
    challenge_id: int = None,
    coupon_code: str = None,
) -> Transaction:
    """
    Añade una fila al libro. No hace commit: debe ir en la misma transacción
    de BD que el cambio de saldo del usuario.
    """
    transaction = Transaction(
        user_id=user_id,
        amount=abs(amount),
        type=type,
        description=description,
        challenge_id=challenge_id,
        coupon_code=coupon_code,
    )
    db.add(transaction)
    return transaction


def get_coin_summary(db: Session, user_id: str) -> dict:
    """Totales ganados / gastados según el libro"""
    rows = db.query(Transaction.type, Transaction.amount).filter(
        Transaction.user_id == user_id
    ).all()

    earned = sum(abs(amount) for t, amount in rows if t == TransactionType.earn.value)
    spent = sum(abs(amount) for t, amount in rows if t == TransactionType.spend.value)

    return {
        "earned": earned,
        "spent": spent,
        "balanceFromLedger": earned - spent,
    }


# =============================================================================
# ===================== CATÁLOGO INICIAL ======================================
# =============================================================================

DEFAULT_CHALLENGES = [
    # ── Diarios cortos (≤30 min) ──
    {"type": "daily", "title": "Comida sin móvil", "description": "Come sin mirar ninguna pantalla", "reward": 3, "duration": 30},
    {"type": "daily", "title": "Paseo consciente", "description": "Sal a caminar 20 minutos sin auriculares", "reward": 3, "duration": 20},
    # ── Diarios medios (31-60 min) ──
    {"type": "daily", "title": "Lectura en papel", "description": "Lee un libro físico durante 45 minutos", "reward": 5, "duration": 45},
    {"type": "daily", "title": "Conversación real", "description": "Una hora de charla cara a cara, móvil en otra habitación", "reward": 5, "duration": 60},
    # ── Diarios largos (>60 min) ──
    {"type": "daily", "title": "Tarde analógica", "description": "Hora y media sin redes sociales", "reward": 8, "duration": 90},
    {"type": "daily", "title": "Mañana offline", "description": "Dos horas sin pantallas al despertar", "reward": 10, "duration": 120},
    # ── Focus ──
    {"type": "focus", "title": "Modo Focus", "description": "Concéntrate hasta 5 horas. 1 moneda por hora.", "reward": 0, "duration": None},
    # ── Social ──
    {"type": "social", "title": "Desconexión en compañía", "description": "Reta a un amigo a desconectar contigo", "reward": 5, "duration": 60},
]


def seed_challenges(db: Session):
    """Inserta el catálogo inicial si la tabla está vacía"""
    if db.query(Challenge).count() > 0:
        return
    for ch in DEFAULT_CHALLENGES:
        db.add(Challenge(
            type=ch["type"],
            title=ch["title"],
            description=ch["description"],
            reward=ch["reward"],
            duration_minutes=ch["duration"],
            is_active=True,
        ))
    db.commit()
    logger.info(f"✅ {len(DEFAULT_CHALLENGES)} retos insertados en el catálogo")
