"""
=============================================================================
SCHEMAS.PY — Esquemas de Validación (Pydantic)
=============================================================================
  - Models (SQLAlchemy) → definen las TABLAS de la BD
  - Schemas (Pydantic) → definen qué DATOS acepta la API

El cliente habla en camelCase ({"challengeId": 3, "customDuration": 120});
en Python los atributos son snake_case. El alias_generator hace la
traducción. Si algo no cuadra (tipo, longitud...) → 422 automático.

Convención de nombres:
  XxxRequest → cuerpo de una acción (POST)
  XxxCreate  → para crear algo nuevo
  XxxUpdate  → para actualizar algo (PATCH)
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from models import NotificationType


class CamelModel(BaseModel):
    """Base: acepta camelCase (y snake_case) en la entrada"""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }


# =============================================================================
# ===================== RETOS =================================================
# =============================================================================

class StartChallengeRequest(CamelModel):
    challenge_id: int
    custom_duration: Optional[int] = Field(default=None, description="Minutos (solo Focus)")

class FinishChallengeRequest(CamelModel):
    user_challenge_id: int
    session_data: Optional[dict] = None
    # session_data → {"durationSeconds": 3600, "interruptions": 0, ...}

class UserChallengeRequest(CamelModel):
    """Acciones que solo necesitan el intento: claim, cancel, share/skip"""
    user_challenge_id: int

class CompleteShareRequest(CamelModel):
    user_challenge_id: int
    image_url: Optional[str] = Field(default=None, max_length=500)
    note: Optional[str] = Field(default=None, max_length=500)


# =============================================================================
# ===================== RETOS SOCIALES ========================================
# =============================================================================

class SocialInviteRequest(CamelModel):
    invitee_id: str = Field(min_length=1, max_length=64)
    challenge_id: int


# =============================================================================
# ===================== NOTIFICACIONES ========================================
# =============================================================================

class NotificationCreate(CamelModel):
    type: NotificationType = NotificationType.system
    title: str = Field(min_length=1, max_length=200)
    message: Optional[str] = None
    payload: Optional[dict] = None


# =============================================================================
# ===================== PERFIL ================================================
# =============================================================================

class ProfileUpdate(CamelModel):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    is_private: Optional[bool] = None


# =============================================================================
# ===================== TIENDA ================================================
# =============================================================================

class PurchaseRequest(CamelModel):
    coupon_id: int


# =============================================================================
# ===================== ADMIN =================================================
# =============================================================================

class ChallengeCreate(CamelModel):
    type: str = Field(pattern=r"^(daily|focus|social)$")
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    reward: int = Field(default=0, ge=0)
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    is_active: bool = True

class ChallengeUpdate(CamelModel):
    type: Optional[str] = Field(default=None, pattern=r"^(daily|focus|social)$")
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    reward: Optional[int] = Field(default=None, ge=0)
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None

class CouponCreate(CamelModel):
    code: str = Field(min_length=1, max_length=50)
    discount_percent: int = Field(ge=1, le=100)
    partner_name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    price: int = Field(ge=0)
    max_uses: Optional[int] = Field(default=None, gt=0)
    valid_from: Optional[datetime] = None
    valid_until: datetime
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("valid_from", "valid_until")
    @classmethod
    def naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # En la BD todo es UTC sin zona
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

class PremiumUpdate(CamelModel):
    # Sin coerción: "true" o 1 no valen, admin.set_premium exige un booleano
    is_premium: Any = None
