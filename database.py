"""
=============================================================================
DATABASE.PY — Conexión a la base de datos de Calixo
=============================================================================
  - Local y tests: SQLite (calixo.db, o en memoria con "sqlite://")
  - Producción: PostgreSQL con el driver psycopg 3

La URL sale de la variable de entorno DATABASE_URL.
Todas las fechas se guardan en UTC sin zona horaria (datetime.utcnow).

Dos formas de abrir una sesión:
  - get_db()        → dependencia de FastAPI, una sesión por petición
  - session_scope() → para código fuera de una petición (arranque, scheduler)
"""

import os
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./calixo.db")

# "postgres://..." (formato de Heroku/Railway) → dialecto + driver explícitos
for prefix in ("postgres://", "postgresql://"):
    if DATABASE_URL.startswith(prefix):
        DATABASE_URL = "postgresql+psycopg://" + DATABASE_URL[len(prefix):]
        break

IS_SQLITE = DATABASE_URL.startswith("sqlite")

if IS_SQLITE:
    # Los endpoints síncronos de FastAPI corren en un threadpool
    engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
else:
    engine = create_engine(DATABASE_URL, pool_pre_ping=True, pool_recycle=1800)


@event.listens_for(engine, "connect")
def _sqlite_foreign_keys(dbapi_connection, connection_record):
    if IS_SQLITE:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    Dependencia de FastAPI:

      @app.get("/api/profile")
      def get_profile(db: Session = Depends(get_db)):
          ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope():
    """Sesión con rollback automático si algo falla dentro del bloque"""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """Crea las tablas que falten. Se llama al arrancar la aplicación."""
    import models  # noqa: F401  (registra los modelos en Base.metadata)
    Base.metadata.create_all(bind=engine)
