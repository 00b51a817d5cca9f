"""
=============================================================================
SCHEDULER.PY — Tareas automáticas
=============================================================================
Usa APScheduler con CronTrigger para ejecutar tareas a horas fijas.

Tareas:
  1. Caducar retos sin reclamar (02:05 hora de Madrid, justo después
     del cambio de día de los retos)

¿Cómo funciona?
  - El día de Calixo empieza a las 2:00 (Europe/Madrid)
  - Un reto "finished" de un día anterior que nadie reclamó pasa a
    "not_claimed" y su dueño recibe una notificación
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from challenge_lifecycle import expire_unclaimed
from daily_challenges import APP_TIMEZONE, DAY_ROLLOVER_HOUR
from database import session_scope

logger = logging.getLogger("calixo.scheduler")

scheduler: AsyncIOScheduler = None


# =============================================================================
# ===================== RETOS SIN RECLAMAR ====================================
# =============================================================================

async def expire_unclaimed_challenges():
    """Se ejecuta una vez al día, pocos minutos después del cambio de día"""
    try:
        with session_scope() as db:
            expired = expire_unclaimed(db)
        logger.info(f"⌛ Caducidad diaria: {expired} retos sin reclamar")
    except Exception as e:
        # Si falla, se reintenta en la ejecución de mañana
        logger.error(f"Error caducando retos sin reclamar: {e}")


# =============================================================================
# ===================== INICIALIZAR SCHEDULER =================================
# =============================================================================

def create_scheduler() -> AsyncIOScheduler:
    global scheduler

    scheduler = AsyncIOScheduler(timezone=APP_TIMEZONE)

    scheduler.add_job(
        expire_unclaimed_challenges,
        CronTrigger(hour=DAY_ROLLOVER_HOUR, minute=5, timezone=APP_TIMEZONE),
        id="expire_unclaimed_challenges",
        name="Caducar retos sin reclamar",
        replace_existing=True
    )

    logger.info(f"⏰ Scheduler configurado: caducidad diaria a las {DAY_ROLLOVER_HOUR:02d}:05 ({APP_TIMEZONE})")
    return scheduler


def start_scheduler():
    """Arranca el scheduler"""
    if scheduler and not scheduler.running:
        scheduler.start()
        logger.info("⏰ Scheduler arrancado")


def stop_scheduler():
    """Para el scheduler"""
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("⏰ Scheduler parado")
