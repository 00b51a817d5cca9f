"""
=============================================================================
ERRORS.PY — Errores de la API
=============================================================================
Cada error lleva su código HTTP y un mensaje en español que se devuelve
tal cual al cliente como {"error": "<mensaje>"}.

  Unauthorized   → 401 (sin sesión o token inválido)
  Forbidden      → 403 (no es administrador o el perfil es privado)
  NotFound       → 404 (reto, intento, usuario... inexistente)
  InvalidState   → 400 (transición no permitida, ej: reclamar sin terminar)
  QuotaExceeded  → 400 (límite diario de retos alcanzado)
  ValidationError → 400 (datos de entrada incorrectos)
  InternalError  → 500 (fallo inesperado de la base de datos)
"""

import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger("calixo.errors")


class CalixoError(Exception):
    status_code = 500
    default_message = "Error interno del servidor"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(CalixoError):
    status_code = 401
    default_message = "No autorizado"


class Forbidden(CalixoError):
    status_code = 403
    default_message = "No tienes permisos para esta acción"


class NotFound(CalixoError):
    status_code = 404
    default_message = "Recurso no encontrado"


class InvalidState(CalixoError):
    status_code = 400
    default_message = "El reto no está en el estado correcto"


class QuotaExceeded(CalixoError):
    status_code = 400
    default_message = "Has alcanzado el límite de retos diarios"


class ValidationError(CalixoError):
    status_code = 400
    default_message = "Datos no válidos"


class InternalError(CalixoError):
    status_code = 500


@contextmanager
def db_operation(db, message: str):
    """
    Envuelve una operación de BD: si SQLAlchemy falla, deshace la
    transacción y lanza InternalError con el mensaje de la operación.

      with db_operation(db, "Error al reclamar el reto"):
          ...
    """
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ {message}: {e}")
        raise InternalError(message) from e
