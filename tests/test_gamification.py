from gamification import (
    MAX_ENERGY, calculate_base_reward, daily_limit_reason, get_coin_summary,
    get_energy_level, max_daily_challenges, record_transaction, seed_challenges,
    update_energy_on_challenge_complete
)
from models import Challenge, User


def _focus():
    return Challenge(type="focus", title="Modo Focus", reward=0)


def test_focus_reward_counts_full_hours_only():
    assert calculate_base_reward(_focus(), {"durationMinutes": 119}) == 1
    assert calculate_base_reward(_focus(), {"durationMinutes": 60}) == 1
    assert calculate_base_reward(_focus(), {"durationMinutes": 59}) == 0
    assert calculate_base_reward(_focus(), {"durationMinutes": 300}) == 5


def test_focus_reward_defaults_to_one_hour():
    assert calculate_base_reward(_focus(), {}) == 1
    assert calculate_base_reward(_focus(), None) == 1


def test_regular_reward_is_catalog_reward():
    challenge = Challenge(type="daily", title="Paseo", reward=7)
    assert calculate_base_reward(challenge, {"durationMinutes": 500}) == 7


def test_daily_limits():
    assert max_daily_challenges(User(is_premium=False)) == 1
    assert max_daily_challenges(User(is_premium=True)) == 3
    assert daily_limit_reason(User(is_premium=True)) == "Has alcanzado el límite de retos diarios (3)"
    assert daily_limit_reason(User(is_premium=False)) == (
        "Has alcanzado el límite de retos diarios gratuitos (1). Actualiza a Premium para más retos."
    )


def test_energy_is_clamped():
    assert update_energy_on_challenge_complete(50, "daily") == 60
    assert update_energy_on_challenge_complete(95, "social") == MAX_ENERGY
    assert update_energy_on_challenge_complete(40, "unknown") == 40


def test_energy_levels():
    assert get_energy_level(100) == "alta"
    assert get_energy_level(70) == "alta"
    assert get_energy_level(69) == "media"
    assert get_energy_level(40) == "media"
    assert get_energy_level(10) == "baja"


def test_coin_summary_from_ledger(db, make_user):
    user = make_user("ledger-user")
    record_transaction(db, user.id, 5, "earn", "Reto completado: A")
    record_transaction(db, user.id, 2, "earn", "Bonus por compartir: A")
    record_transaction(db, user.id, -4, "spend", "Cupón X")
    db.commit()

    assert get_coin_summary(db, user.id) == {"earned": 7, "spent": 4, "balanceFromLedger": 3}


def test_seed_challenges_only_once(db):
    seed_challenges(db)
    count = db.query(Challenge).count()
    seed_challenges(db)
    assert db.query(Challenge).count() == count
    assert db.query(Challenge).filter(Challenge.type == "focus").count() == 1
