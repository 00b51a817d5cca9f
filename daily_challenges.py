"""
=============================================================================
DAILY_CHALLENGES.PY — Selección determinista de los retos del día
=============================================================================
Cada usuario ve 3 retos diarios (uno corto, uno medio y uno largo) que:
  - Cambian cada día a las 2:00 (hora de Madrid)
  - Son los MISMOS durante todo el día para ese usuario, aunque recargue
    la página o la petición la atienda otra instancia del servidor

No se guarda la selección en BD: es una función pura de (día, usuario).
La semilla es "YYYY-MM-DD-<user_id>" y de ella sale un generador
pseudoaleatorio propio, reproducible entre reinicios e instancias.
"""

import math
import os
from datetime import datetime, timedelta

import pytz

# ─────────────────────────────────────────────────────────────────────────────
# CONFIGURACIÓN
# ─────────────────────────────────────────────────────────────────────────────

APP_TIMEZONE = os.getenv("CALIXO_TIMEZONE", "Europe/Madrid")
DAY_ROLLOVER_HOUR = int(os.getenv("CALIXO_DAY_ROLLOVER_HOUR", "2"))
# Antes de esta hora local seguimos en "el día anterior"

DAILY_SELECTION_SIZE = 3

SHORT_MAX_MINUTES = 30
MEDIUM_MAX_MINUTES = 60

BUCKET_DEFAULT_DURATIONS = {
    "short": 30,
    "medium": 45,
    "long": 90,
}

_MASK_32 = 0xFFFFFFFF


# =============================================================================
# ===================== GENERADOR PSEUDOALEATORIO =============================
# =============================================================================

def _hash_seed(seed: str) -> int:
    """hash = hash * 31 + código, con desbordamiento de 32 bits"""
    data = seed.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        code_unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + code_unit) & _MASK_32
    return h


def seeded_random(seed: str):
    """
    Devuelve una función sin argumentos que produce floats en [0, 1].
    Misma semilla → misma secuencia infinita.
    """
    state = _hash_seed(seed)

    def next_random() -> float:
        nonlocal state
        h = state
        h = ((h ^ (h >> 16)) * 0x85EBCA6B) & _MASK_32
        h = ((h ^ (h >> 13)) * 0xC2B2AE35) & _MASK_32
        h ^= h >> 16
        state = h
        return h / 0xFFFFFFFF

    return next_random


def _random_index(rand, length: int) -> int:
    # rand() puede devolver exactamente 1.0 cuando h == 0xFFFFFFFF
    return min(math.floor(rand() * length), length - 1)


# =============================================================================
# ===================== SELECCIÓN DIARIA ======================================
# =============================================================================

def duration_bucket(duration_minutes) -> str:
    """Clasifica la duración: short (≤30, o sin duración), medium (31-60), long (>60)"""
    duration = duration_minutes if duration_minutes is not None else BUCKET_DEFAULT_DURATIONS["short"]
    if duration <= SHORT_MAX_MINUTES:
        return "short"
    if duration <= MEDIUM_MAX_MINUTES:
        return "medium"
    return "long"


def _duration_of(challenge):
    if isinstance(challenge, dict):
        return challenge.get("duration_minutes", challenge.get("durationMinutes"))
    return challenge.duration_minutes


def select_daily_challenges(pool: list, seed: str) -> list:
    """
    Elige hasta 3 retos del pool de forma determinista.

    Pasos:
      1. Repartir el pool en cubos por duración (short, medium, long)
      2. Sacar uno al azar de cada cubo no vacío
      3. Si faltan (algún cubo vacío), completar con el resto del pool
      4. Barajar la selección (Fisher-Yates) con el MISMO generador

    El orden del pool importa: el llamante debe pasarlo ordenado (por id).
    Con menos de 3 retos en el pool devuelve menos de 3, nunca falla.
    """
    rand = seeded_random(seed)

    buckets = {"short": [], "medium": [], "long": []}
    for challenge in pool:
        buckets[duration_bucket(_duration_of(challenge))].append(challenge)

    selected = []
    for name in ("short", "medium", "long"):
        bucket = buckets[name]
        if bucket:
            selected.append(bucket[_random_index(rand, len(bucket))])

    if len(selected) < DAILY_SELECTION_SIZE:
        chosen_ids = {id(c) for c in selected}
        remaining = [c for c in pool if id(c) not in chosen_ids]
        while len(selected) < DAILY_SELECTION_SIZE and remaining:
            selected.append(remaining.pop(_random_index(rand, len(remaining))))

    for i in range(len(selected) - 1, 0, -1):
        j = _random_index(rand, i + 1)
        selected[i], selected[j] = selected[j], selected[i]

    return selected


# =============================================================================
# ===================== CLAVES DE DÍA =========================================
# =============================================================================
# El "día" de Calixo empieza a las 2:00 hora de Madrid, no a medianoche.

def _date_key_from_local(local_dt: datetime) -> str:
    if local_dt.hour < DAY_ROLLOVER_HOUR:
        local_dt = local_dt - timedelta(days=1)
    return local_dt.strftime("%Y-%m-%d")


def get_date_key(now: datetime = None, timezone: str = APP_TIMEZONE) -> str:
    """
    Clave del día actual ("2024-01-01").
    `now` es un datetime UTC naive (como los de la BD); por defecto, ahora.
    """
    return get_date_key_for_timestamp(now or datetime.utcnow(), timezone)


def get_date_key_for_timestamp(timestamp: datetime, timezone: str = APP_TIMEZONE) -> str:
    """Clave del día al que pertenece un timestamp UTC guardado en BD"""
    tz = pytz.timezone(timezone)
    if timestamp.tzinfo is None:
        timestamp = pytz.utc.localize(timestamp)
    return _date_key_from_local(timestamp.astimezone(tz))


def _localize_rollover(tz, day: datetime) -> datetime:
    """Primer instante del día `day` con hora local >= DAY_ROLLOVER_HOUR"""
    local = day.replace(hour=DAY_ROLLOVER_HOUR)
    try:
        return tz.localize(local, is_dst=None)
    except pytz.exceptions.AmbiguousTimeError:
        # Otoño: las 2:00 pasan dos veces, el día empieza en la primera (verano)
        return tz.localize(local, is_dst=True)
    except pytz.exceptions.NonExistentTimeError:
        # Primavera: de 2:00 se salta a 3:00 de verano
        return tz.localize(local, is_dst=False)


def day_window_utc(date_key: str, timezone: str = APP_TIMEZONE) -> tuple:
    """
    (inicio, fin) en UTC naive del día `date_key`: de las 2:00 locales de ese
    día a las 2:00 locales del siguiente. Se calcula cada extremo por separado
    para respetar los cambios de horario.
    """
    tz = pytz.timezone(timezone)
    day = datetime.strptime(date_key, "%Y-%m-%d")
    start_local = _localize_rollover(tz, day)
    end_local = _localize_rollover(tz, day + timedelta(days=1))
    start = start_local.astimezone(pytz.utc).replace(tzinfo=None)
    end = end_local.astimezone(pytz.utc).replace(tzinfo=None)
    return start, end


def daily_seed(date_key: str, user_id) -> str:
    return f"{date_key}-{user_id}"
