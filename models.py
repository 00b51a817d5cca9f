"""
=============================================================================
MODELS.PY — Modelos (Tablas) de la Base de Datos
=============================================================================
Cada clase = una tabla. Cada atributo = una columna.

RELACIONES:
  USER
  ├── user_challenges[] ──→ challenge (catálogo)
  │                     └──→ focus_session (solo retos focus)
  ├── transactions[]  (libro de monedas, solo se añaden filas)
  ├── feed_items[] ──→ likes[]
  ├── notifications[]
  ├── followers / following (tabla followers)
  └── user_coupons[] ──→ coupon

Los UserChallenge NUNCA se borran: los cancelados se quedan para auditoría
y para el conteo del límite diario.
"""

from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Boolean, Text, DateTime, ForeignKey, JSON,
    UniqueConstraint
)
from sqlalchemy.orm import relationship
from database import Base
import enum


# =============================================================================
# ===================== ENUMS (Tipos predefinidos) ============================
# =============================================================================

class ChallengeType(str, enum.Enum):
    """Tipo de reto del catálogo"""
    daily = "daily"      # Reto diario de desconexión
    focus = "focus"      # Modo Focus (duración elegida por el usuario)
    social = "social"    # Reto con otro usuario

class ChallengeStatus(str, enum.Enum):
    """Estado de un intento de reto (UserChallenge)"""
    in_progress = "in_progress"    # El tiempo está corriendo
    finished = "finished"          # El timer terminó, falta reclamar
    completed = "completed"        # Reclamado y recompensa entregada
    canceled = "canceled"          # Abandonado por el usuario
    not_claimed = "not_claimed"    # Terminó pero no se reclamó ese día

class TransactionType(str, enum.Enum):
    earn = "earn"
    spend = "spend"

class NotificationType(str, enum.Enum):
    reward = "reward"
    social = "social"
    system = "system"
    challenge = "challenge"

class SocialSessionStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    rejected = "rejected"


# =============================================================================
# ===================== TABLA 1: USERS ========================================
# =============================================================================

class User(Base):
    __tablename__ = "users"

    # El id lo asigna el proveedor de identidad externo (viene en el JWT)
    id = Column(String(64), primary_key=True)

    email = Column(String(255), nullable=True, index=True)
    display_name = Column(String(100), nullable=False, default="Usuario")

    # ── Economía y avatar ──
    coins = Column(Integer, nullable=False, default=0)
    # coins → saldo desnormalizado; el historial está en transactions
    streak = Column(Integer, nullable=False, default=0)
    # streak → retos completados seguidos
    avatar_energy = Column(Integer, nullable=False, default=100)
    # avatar_energy → 0 a 100

    # ── Permisos y privacidad ──
    is_premium = Column(Boolean, default=False)
    is_admin = Column(Boolean, default=False)
    is_private = Column(Boolean, default=False)

    # ── Timestamps ──
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_active = Column(DateTime, default=datetime.utcnow)

    user_challenges = relationship("UserChallenge", back_populates="user")
    transactions = relationship("Transaction", back_populates="user")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")
    feed_items = relationship("FeedItem", back_populates="user")


# =============================================================================
# ===================== TABLA 2: CHALLENGES ===================================
# =============================================================================
# Catálogo de retos. Solo los administradores los crean o editan.

class Challenge(Base):
    __tablename__ = "challenges"

    id = Column(Integer, primary_key=True, autoincrement=True)

    type = Column(String(20), nullable=False, index=True)
    # type → "daily", "focus" o "social"
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    reward = Column(Integer, nullable=False, default=0)
    # reward → monedas base (en focus se ignora: 1 moneda por hora)
    duration_minutes = Column(Integer, nullable=True)
    # duration_minutes → null = reto corto (30 min)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# ===================== TABLA 3: USER_CHALLENGES ==============================
# =============================================================================
# Un intento de un usuario sobre un reto del catálogo.

class UserChallenge(Base):
    __tablename__ = "user_challenges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    challenge_id = Column(Integer, ForeignKey("challenges.id"), nullable=False)

    status = Column(String(20), nullable=False, default=ChallengeStatus.in_progress.value)

    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    claimed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    canceled_at = Column(DateTime, nullable=True)

    session_data = Column(JSON, nullable=True)
    # session_data → {"durationMinutes": 120, "durationSeconds": 7200,
    #                 "interruptions": 0, "startTime": "...", "endTime": "..."}
    shared = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    user = relationship("User", back_populates="user_challenges")
    challenge = relationship("Challenge")
    focus_session = relationship("FocusSession", back_populates="user_challenge", uselist=False)


# =============================================================================
# ===================== TABLA 4: TRANSACTIONS =================================
# =============================================================================
# Libro de monedas. Solo se añaden filas. amount siempre positivo: el signo
# lo da type ("earn" suma, "spend" resta).

class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)

    amount = Column(Integer, nullable=False)
    type = Column(String(10), nullable=False)
    description = Column(String(300), nullable=True)
    challenge_id = Column(Integer, ForeignKey("challenges.id"), nullable=True)
    coupon_code = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="transactions")


# =============================================================================
# ===================== TABLA 5: FOCUS_SESSIONS ===============================
# =============================================================================

class FocusSession(Base):
    __tablename__ = "focus_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_challenge_id = Column(Integer, ForeignKey("user_challenges.id"), nullable=False, unique=True)

    duration_seconds = Column(Integer, default=0)
    interruptions = Column(Integer, default=0)
    # interruptions → siempre 0 con el "sistema de confianza"
    completed_successfully = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    user_challenge = relationship("UserChallenge", back_populates="focus_session")


# =============================================================================
# ===================== TABLA 6: FEED =========================================
# =============================================================================

class FeedItem(Base):
    __tablename__ = "feed_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_challenge_id = Column(Integer, ForeignKey("user_challenges.id"), nullable=False)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)

    image_url = Column(String(500), nullable=True)
    note = Column(Text, nullable=True)
    likes_count = Column(Integer, default=0)
    is_hidden = Column(Boolean, default=False)
    # is_hidden → ocultado por moderación

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="feed_items")
    user_challenge = relationship("UserChallenge")


class FeedLike(Base):
    __tablename__ = "feed_likes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    feed_item_id = Column(Integer, ForeignKey("feed_items.id"), nullable=False)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('feed_item_id', 'user_id', name='uq_feed_like'),
    )


# =============================================================================
# ===================== TABLA 7: FOLLOWERS ====================================
# =============================================================================

class Follower(Base):
    __tablename__ = "followers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    follower_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    following_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('follower_id', 'following_id', name='uq_follower'),
    )


# =============================================================================
# ===================== TABLA 8: NOTIFICATIONS ================================
# =============================================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)

    type = Column(String(20), nullable=False)
    # type → "reward", "social", "system", "challenge"
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    # payload → {"type": "share_reminder", "userChallengeId": 3, ...}
    seen = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="notifications")


# =============================================================================
# ===================== TABLA 9: SOCIAL_SESSIONS ==============================
# =============================================================================

class SocialSession(Base):
    __tablename__ = "social_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    inviter_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    invitee_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    challenge_id = Column(Integer, ForeignKey("challenges.id"), nullable=False)

    status = Column(String(20), default=SocialSessionStatus.pending.value)

    created_at = Column(DateTime, default=datetime.utcnow)
    accepted_at = Column(DateTime, nullable=True)


# =============================================================================
# ===================== TABLA 10: COUPONS =====================================
# =============================================================================
# Cupones de descuento de partners que se compran con monedas.

class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, autoincrement=True)

    code = Column(String(50), unique=True, nullable=False)
    discount_percent = Column(Integer, nullable=False)
    partner_name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    price = Column(Integer, nullable=False, default=0)
    # price → monedas necesarias
    max_uses = Column(Integer, nullable=True)
    # max_uses → null = ilimitado
    used_count = Column(Integer, nullable=False, default=0)

    valid_from = Column(DateTime, default=datetime.utcnow)
    valid_until = Column(DateTime, nullable=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)


class UserCoupon(Base):
    __tablename__ = "user_coupons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False)

    purchased_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'coupon_id', name='uq_user_coupon'),
    )

    coupon = relationship("Coupon")
