"""
=============================================================================
AUTH.PY — Autenticación
=============================================================================
El login (email, Google...) lo hace un proveedor de identidad externo.
Este backend solo recibe su JWT y comprueba la firma.

  Authorization: Bearer <token>
    → sub          : id del usuario (string)
    → email        : opcional
    → display_name : opcional

Si el usuario del token no existe todavía en la BD se crea en ese momento
(aprovisionamiento perezoso) con los valores por defecto: 0 monedas,
energía 100, sin premium.
"""

import logging
import os
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import get_db
from errors import Forbidden, Unauthorized
from models import User

logger = logging.getLogger("calixo.auth")

# ─────────────────────────────────────────────────────────────────────────────
# CONFIGURACIÓN
# ─────────────────────────────────────────────────────────────────────────────

SECRET_KEY = os.getenv("SECRET_KEY", "calixo-dev-secret-key-cambiar-en-produccion")
# SECRET_KEY → la misma clave con la que firma el proveedor de identidad

ALGORITHM = "HS256"

ACCESS_TOKEN_EXPIRE_DAYS = 30


# ─────────────────────────────────────────────────────────────────────────────
# TOKENS JWT
# ─────────────────────────────────────────────────────────────────────────────

def create_access_token(user_id: str, email: str = None, display_name: str = None) -> str:
    """
    Firma un token con el mismo formato que el proveedor de identidad.
    Se usa en desarrollo y en los tests.
    """
    expire = datetime.utcnow() + timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS)
    to_encode = {"sub": str(user_id), "exp": expire}
    if email:
        to_encode["email"] = email
    if display_name:
        to_encode["display_name"] = display_name
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Datos del token, o None si es inválido o ha caducado"""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


# ─────────────────────────────────────────────────────────────────────────────
# DEPENDENCIAS
# ─────────────────────────────────────────────────────────────────────────────

security = HTTPBearer(auto_error=False)
# auto_error=False → sin cabecera no salta el 403 de FastAPI; devolvemos 401


def _provision_user(db: Session, payload: dict) -> User:
    email = payload.get("email")
    display_name = payload.get("display_name") or (email.split("@")[0] if email else "Usuario")
    user = User(id=payload["sub"], email=email, display_name=display_name)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Otra petición del mismo usuario lo creó a la vez
        db.rollback()
        return db.query(User).filter(User.id == payload["sub"]).first()
    db.refresh(user)
    logger.info(f"👤 Usuario nuevo: {user.id}")
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Usuario autenticado de la petición:

      @app.get("/api/profile")
      def get_profile(user: User = Depends(get_current_user)):
          ...
    """
    if credentials is None or not credentials.credentials:
        raise Unauthorized()

    payload = decode_token(credentials.credentials)
    if payload is None or not payload.get("sub"):
        raise Unauthorized()

    user = db.query(User).filter(User.id == payload["sub"]).first()
    if user is None:
        user = _provision_user(db, payload)

    user.last_active = datetime.utcnow()
    db.commit()

    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Solo administradores (gestión del catálogo y de cupones)"""
    if not user.is_admin:
        raise Forbidden("Solo los administradores pueden hacer esto")
    return user
