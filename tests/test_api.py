from datetime import datetime, timedelta

from sqlalchemy import event

import social
from conftest import auth_headers, challenge_of_type
from models import (
    Coupon, FeedItem, FeedLike, Notification, NotificationType, User, UserChallenge
)


def test_health(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_requires_token(client):
    response = client.get("/api/challenges")
    assert response.status_code == 401
    assert response.json() == {"error": "No autorizado"}


def test_invalid_token(client):
    response = client.get("/api/profile", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_user_is_provisioned_on_first_request(client, db):
    response = client.get("/api/profile", headers=auth_headers("new-user", email="ana@example.com"))
    assert response.status_code == 200
    body = response.json()
    assert body["userId"] == "new-user"
    assert body["displayName"] == "ana"
    assert body["coins"] == 0
    assert body["avatarEnergy"] == 100
    assert db.get(User, "new-user") is not None


def test_challenge_flow_over_http(client, db, make_user, catalog):
    make_user("http-user")
    headers = auth_headers("http-user")

    listed = client.get("/api/challenges", params={"type": "daily"}, headers=headers).json()
    assert len(listed["challenges"]) == 3
    challenge = listed["challenges"][0]

    started = client.post("/api/challenges/start", json={"challengeId": challenge["id"]}, headers=headers)
    assert started.status_code == 200
    uc_id = started.json()["userChallenge"]["id"]

    active = client.get("/api/challenges/active", headers=headers).json()["activeChallenge"]
    assert active["id"] == uc_id

    early = client.post("/api/challenges/claim", json={"userChallengeId": uc_id}, headers=headers)
    assert early.status_code == 400
    assert "error" in early.json()

    finished = client.post(
        "/api/challenges/finish",
        json={"userChallengeId": uc_id, "sessionData": {"durationSeconds": 60}},
        headers=headers,
    )
    assert finished.status_code == 200

    claimed = client.post("/api/challenges/claim", json={"userChallengeId": uc_id}, headers=headers)
    assert claimed.status_code == 200
    assert claimed.json()["newCoins"] == challenge["reward"]

    shared = client.post(
        "/api/challenges/complete",
        json={"userChallengeId": uc_id, "note": "Sin móvil"},
        headers=headers,
    )
    assert shared.status_code == 200
    assert shared.json()["newCoins"] == challenge["reward"] + 2

    ledger = client.get("/api/transactions", headers=headers).json()
    assert len(ledger["transactions"]) == 2
    assert ledger["summary"]["balanceFromLedger"] == ledger["coins"]

    feed = client.get("/api/feed", headers=headers).json()["items"]
    assert [item["note"] for item in feed] == ["Sin móvil"]


def test_quota_over_http(client, make_user, catalog):
    make_user("quota-user")
    headers = auth_headers("quota-user")
    first = challenge_of_type(catalog, "daily", 30)
    second = challenge_of_type(catalog, "daily", 45)

    uc_id = client.post("/api/challenges/start", json={"challengeId": first.id}, headers=headers).json()["userChallenge"]["id"]
    client.post("/api/challenges/finish", json={"userChallengeId": uc_id}, headers=headers)

    blocked = client.post("/api/challenges/start", json={"challengeId": second.id}, headers=headers)
    assert blocked.status_code == 400
    assert "límite de retos diarios gratuitos" in blocked.json()["error"]


def test_invalid_type_filter(client, make_user):
    make_user("filter-user")
    response = client.get("/api/challenges", params={"type": "weekly"}, headers=auth_headers("filter-user"))
    assert response.status_code == 422


def test_unknown_challenge_is_404(client, make_user, catalog):
    make_user("ghost")
    response = client.post("/api/challenges/start", json={"challengeId": 9999}, headers=auth_headers("ghost"))
    assert response.status_code == 404
    assert response.json() == {"error": "Reto no encontrado"}


def test_cancel_over_http(client, make_user, catalog):
    make_user("cancel-user")
    headers = auth_headers("cancel-user")
    challenge = challenge_of_type(catalog, "daily")
    uc_id = client.post("/api/challenges/start", json={"challengeId": challenge.id}, headers=headers).json()["userChallenge"]["id"]

    response = client.post("/api/challenges/cancel", json={"userChallengeId": uc_id}, headers=headers)
    assert response.json() == {"success": True, "message": "Reto cancelado"}

    again = client.post("/api/challenges/cancel", json={"userChallengeId": uc_id}, headers=headers)
    assert again.status_code == 400


def test_follow_and_private_profile(client, db, make_user):
    make_user("alice")
    make_user("bob", is_private=True)

    hidden = client.get("/api/profile/bob", headers=auth_headers("alice")).json()
    assert hidden["stats"] is None
    assert hidden["isFollowing"] is False

    followed = client.post("/api/profile/bob/follow", headers=auth_headers("alice")).json()
    assert followed == {"success": True, "isFollowing": True, "followersCount": 1}

    visible = client.get("/api/profile/bob", headers=auth_headers("alice")).json()
    assert visible["stats"]["followers"] == 1

    followers = client.get("/api/profile/bob/followers", headers=auth_headers("alice")).json()["users"]
    assert [u["userId"] for u in followers] == ["alice"]

    inbox = client.get("/api/notifications", headers=auth_headers("bob")).json()
    assert inbox["unseenCount"] == 1
    assert inbox["notifications"][0]["payload"]["type"] == "new_follower"

    unfollowed = client.post("/api/profile/bob/follow", headers=auth_headers("alice")).json()
    assert unfollowed["isFollowing"] is False


def test_cannot_follow_self(client, make_user):
    make_user("narcissus")
    response = client.post("/api/profile/narcissus/follow", headers=auth_headers("narcissus"))
    assert response.status_code == 400


def test_like_toggle_notifies_owner(client, db, make_user, catalog):
    make_user("poster")
    make_user("fan")
    uc = UserChallenge(user_id="poster", challenge_id=catalog[0].id, status="completed", shared=True)
    db.add(uc)
    db.commit()
    item = FeedItem(user_challenge_id=uc.id, user_id="poster", note="hola", likes_count=0)
    db.add(item)
    db.commit()
    item_id = item.id

    liked = client.post(f"/api/feed/{item_id}/like", headers=auth_headers("fan")).json()
    assert liked == {"success": True, "isLiked": True, "likesCount": 1}

    unliked = client.post(f"/api/feed/{item_id}/like", headers=auth_headers("fan")).json()
    assert unliked == {"success": True, "isLiked": False, "likesCount": 0}

    db.expire_all()
    notes = db.query(Notification).filter(Notification.user_id == "poster").all()
    assert [n.payload["type"] for n in notes] == ["feed_like"]

    missing = client.post("/api/feed/9999/like", headers=auth_headers("fan"))
    assert missing.status_code == 404


def test_duplicate_like_does_not_notify_twice(db, make_user, catalog):
    make_user("poster-2")
    fan = make_user("fan-2")
    uc = UserChallenge(user_id="poster-2", challenge_id=catalog[0].id, status="completed", shared=True)
    db.add(uc)
    db.commit()
    item = FeedItem(user_challenge_id=uc.id, user_id="poster-2", likes_count=0)
    db.add(item)
    db.commit()
    item_id = item.id

    # Otra petición mete el mismo like entre la comprobación y el insert
    def concurrent_like(session, flush_context, instances):
        if any(isinstance(obj, FeedLike) for obj in session.new):
            session.connection().execute(
                FeedLike.__table__.insert().values(feed_item_id=item_id, user_id="fan-2")
            )

    event.listen(db, "before_flush", concurrent_like)
    try:
        result = social.toggle_like(db, fan, item_id)
    finally:
        event.remove(db, "before_flush", concurrent_like)

    assert result == {"success": True, "isLiked": True, "likesCount": 0}
    assert db.query(Notification).filter(Notification.user_id == "poster-2").count() == 0
    assert db.get(FeedItem, item_id).likes_count == 0


def _post(db, user_id, catalog, **fields):
    uc = UserChallenge(user_id=user_id, challenge_id=catalog[0].id, status="completed", shared=True)
    db.add(uc)
    db.commit()
    item = FeedItem(user_challenge_id=uc.id, user_id=user_id, **fields)
    db.add(item)
    db.commit()
    return item.id


def test_single_feed_item(client, db, make_user, catalog):
    make_user("author")
    make_user("reader-1")
    item_id = _post(db, "author", catalog, note="sin pantallas")
    hidden_id = _post(db, "author", catalog, is_hidden=True)

    response = client.get(f"/api/feed/{item_id}", headers=auth_headers("reader-1"))
    assert response.status_code == 200
    body = response.json()
    assert body["id"] == item_id
    assert body["note"] == "sin pantallas"
    assert body["displayName"] == "author"
    assert body["isLiked"] is False

    assert client.get(f"/api/feed/{hidden_id}", headers=auth_headers("reader-1")).status_code == 404
    assert client.get("/api/feed/9999", headers=auth_headers("reader-1")).status_code == 404


def test_user_feed_pages_and_total(client, db, make_user, catalog):
    make_user("diarist")
    make_user("reader-2")
    base = datetime(2024, 6, 1, 12, 0)
    ids = [_post(db, "diarist", catalog, created_at=base + timedelta(hours=i)) for i in range(3)]
    _post(db, "diarist", catalog, is_hidden=True)

    first = client.get("/api/profile/diarist/feed?limit=2", headers=auth_headers("reader-2")).json()
    assert [i["id"] for i in first["items"]] == [ids[2], ids[1]]
    assert first["total"] == 3
    assert first["hasMore"] is True

    second = client.get("/api/profile/diarist/feed?limit=2&offset=2", headers=auth_headers("reader-2")).json()
    assert [i["id"] for i in second["items"]] == [ids[0]]
    assert second["hasMore"] is False
    assert "total" not in second

    assert client.get("/api/profile/nobody/feed", headers=auth_headers("reader-2")).status_code == 404


def test_private_profile_feed_needs_follow(client, db, make_user, catalog):
    make_user("hermit", is_private=True)
    make_user("curious")
    item_id = _post(db, "hermit", catalog)

    blocked = client.get("/api/profile/hermit/feed", headers=auth_headers("curious"))
    assert blocked.status_code == 403
    assert blocked.json() == {"error": "Este perfil es privado"}
    assert client.get(f"/api/feed/{item_id}", headers=auth_headers("curious")).status_code == 403

    own = client.get("/api/profile/hermit/feed", headers=auth_headers("hermit")).json()
    assert [i["id"] for i in own["items"]] == [item_id]

    client.post("/api/profile/hermit/follow", headers=auth_headers("curious"))
    allowed = client.get("/api/profile/hermit/feed", headers=auth_headers("curious")).json()
    assert [i["id"] for i in allowed["items"]] == [item_id]
    assert client.get(f"/api/feed/{item_id}", headers=auth_headers("curious")).status_code == 200


def test_notifications_crud(client, make_user):
    make_user("reader")
    headers = auth_headers("reader")

    created = client.post("/api/notifications", json={"title": "Recuerda", "type": "system"}, headers=headers).json()
    client.post("/api/notifications", json={"title": "Otra"}, headers=headers)
    assert client.get("/api/notifications", headers=headers).json()["unseenCount"] == 2

    seen = client.patch(f"/api/notifications/{created['id']}/seen", headers=headers).json()
    assert seen["seen"] is True

    all_seen = client.patch("/api/notifications/seen", headers=headers).json()
    assert all_seen["updated"] == 1

    deleted = client.delete(f"/api/notifications/{created['id']}", headers=headers)
    assert deleted.json() == {"success": True}
    assert len(client.get("/api/notifications", headers=headers).json()["notifications"]) == 1

    assert client.delete(f"/api/notifications/{created['id']}", headers=headers).status_code == 404


def test_notification_types_come_from_enum(client, make_user):
    make_user("typed")
    headers = auth_headers("typed")

    created = client.post("/api/notifications", json={"title": "Premio", "type": "reward"}, headers=headers).json()
    assert created["type"] == "reward"
    defaulted = client.post("/api/notifications", json={"title": "Aviso"}, headers=headers).json()
    assert defaulted["type"] == "system"

    bad = client.post("/api/notifications", json={"title": "Raro", "type": "marketing"}, headers=headers)
    assert bad.status_code == 422
    assert [n.value for n in NotificationType] == ["reward", "social", "system", "challenge"]


def test_social_challenge_invite_and_accept(client, make_user, catalog):
    make_user("inviter")
    make_user("invitee")
    social_challenge = challenge_of_type(catalog, "social")

    invited = client.post(
        "/api/challenges/social",
        json={"inviteeId": "invitee", "challengeId": social_challenge.id},
        headers=auth_headers("inviter"),
    )
    assert invited.status_code == 200
    session_id = invited.json()["session"]["id"]

    missing = client.post(
        "/api/challenges/social",
        json={"inviteeId": "nobody", "challengeId": social_challenge.id},
        headers=auth_headers("inviter"),
    )
    assert missing.status_code == 404

    sessions = client.get("/api/challenges/social", headers=auth_headers("invitee")).json()["sessions"]
    assert [s["status"] for s in sessions] == ["pending"]

    accepted = client.post(f"/api/challenges/social/{session_id}/accept", headers=auth_headers("invitee"))
    assert accepted.status_code == 200

    again = client.post(f"/api/challenges/social/{session_id}/accept", headers=auth_headers("invitee"))
    assert again.status_code == 400


def _coupon(db, **fields):
    data = {
        "code": "CAFE10",
        "discount_percent": 10,
        "partner_name": "Café Lento",
        "price": 5,
        "valid_until": datetime.utcnow() + timedelta(days=30),
    }
    data.update(fields)
    coupon = Coupon(**data)
    db.add(coupon)
    db.commit()
    return coupon.id


def test_store_purchase(client, db, make_user):
    make_user("shopper", coins=12)
    headers = auth_headers("shopper")
    coupon_id = _coupon(db)

    listed = client.get("/api/store", headers=headers).json()["items"]
    assert listed[0]["canAfford"] is True
    assert listed[0]["purchased"] is False

    bought = client.post("/api/store/purchase", json={"couponId": coupon_id}, headers=headers)
    assert bought.status_code == 200
    assert bought.json()["newCoins"] == 7

    again = client.post("/api/store/purchase", json={"couponId": coupon_id}, headers=headers)
    assert again.status_code == 400
    assert again.json() == {"error": "Ya has comprado este cupón"}

    purchased = client.get("/api/store/purchased", headers=headers).json()["coupons"]
    assert [c["code"] for c in purchased] == ["CAFE10"]

    ledger = client.get("/api/transactions", headers=headers).json()
    assert ledger["transactions"][0]["type"] == "spend"
    assert ledger["transactions"][0]["couponCode"] == "CAFE10"


def test_store_insufficient_coins(client, db, make_user):
    make_user("broke", coins=1)
    coupon_id = _coupon(db, code="LIBRO20", price=20)

    response = client.post("/api/store/purchase", json={"couponId": coupon_id}, headers=auth_headers("broke"))
    assert response.status_code == 400
    assert response.json() == {"error": "No tienes suficientes monedas"}
    db.expire_all()
    assert db.get(User, "broke").coins == 1


def test_store_sold_out_and_expired(client, db, make_user):
    make_user("late", coins=100)
    sold_out = _coupon(db, code="AGOTADO", max_uses=1, used_count=1)
    expired = _coupon(db, code="VIEJO", valid_until=datetime.utcnow() - timedelta(days=1))
    headers = auth_headers("late")

    assert client.post("/api/store/purchase", json={"couponId": sold_out}, headers=headers).status_code == 400
    assert client.post("/api/store/purchase", json={"couponId": expired}, headers=headers).status_code == 404


def test_admin_requires_admin(client, make_user):
    make_user("regular")
    response = client.get("/api/admin/challenges", headers=auth_headers("regular"))
    assert response.status_code == 403
    assert "error" in response.json()


def test_admin_manages_catalog(client, make_user):
    make_user("boss", is_admin=True)
    headers = auth_headers("boss")

    created = client.post(
        "/api/admin/challenges",
        json={"type": "daily", "title": "Cena en familia", "reward": 4, "durationMinutes": 50},
        headers=headers,
    )
    assert created.status_code == 200
    challenge_id = created.json()["id"]

    updated = client.patch(f"/api/admin/challenges/{challenge_id}", json={"isActive": False}, headers=headers).json()
    assert updated["isActive"] is False
    assert updated["durationMinutes"] == 50

    bad = client.patch(f"/api/admin/challenges/{challenge_id}", json={"title": None}, headers=headers)
    assert bad.status_code == 400

    listed = client.get("/api/admin/challenges", headers=headers).json()["challenges"]
    assert challenge_id in [c["id"] for c in listed]

    coupon = client.post(
        "/api/admin/coupons",
        json={
            "code": "yoga15",
            "discountPercent": 15,
            "partnerName": "Yoga Centro",
            "price": 8,
            "validUntil": (datetime.utcnow() + timedelta(days=10)).isoformat(),
        },
        headers=headers,
    )
    assert coupon.status_code == 200
    assert coupon.json()["code"] == "YOGA15"


def test_admin_cannot_change_reward_of_pending_attempt(client, make_user, catalog):
    make_user("boss-2", is_admin=True)
    make_user("runner")
    challenge = challenge_of_type(catalog, "daily", 45)
    admin_headers = auth_headers("boss-2")
    headers = auth_headers("runner")

    uc_id = client.post(
        "/api/challenges/start", json={"challengeId": challenge.id}, headers=headers
    ).json()["userChallenge"]["id"]

    blocked = client.patch(f"/api/admin/challenges/{challenge.id}", json={"reward": 500}, headers=admin_headers)
    assert blocked.status_code == 400
    assert "error" in blocked.json()

    hidden = client.patch(f"/api/admin/challenges/{challenge.id}", json={"isActive": False}, headers=admin_headers)
    assert hidden.status_code == 200

    client.post("/api/challenges/finish", json={"userChallengeId": uc_id}, headers=headers)
    claimed = client.post("/api/challenges/claim", json={"userChallengeId": uc_id}, headers=headers).json()
    assert claimed["coinsEarned"] == 5


def test_admin_sets_premium(client, db, make_user, catalog):
    make_user("boss-3", is_admin=True)
    make_user("member")
    headers = auth_headers("boss-3")

    response = client.put("/api/admin/users/member/premium", json={"isPremium": True}, headers=headers)
    assert response.status_code == 200
    assert response.json() == {"success": True, "user": {"id": "member", "isPremium": True}}

    listed = client.get("/api/challenges?type=daily", headers=auth_headers("member")).json()
    assert listed["userProfile"]["maxDailyChallenges"] == 3

    revoked = client.put("/api/admin/users/member/premium", json={"isPremium": False}, headers=headers).json()
    assert revoked["user"]["isPremium"] is False
    db.expire_all()
    assert db.get(User, "member").is_premium is False


def test_admin_set_premium_errors(client, make_user):
    make_user("boss-4", is_admin=True)
    make_user("plain")

    missing = client.put("/api/admin/users/ghost/premium", json={"isPremium": True}, headers=auth_headers("boss-4"))
    assert missing.status_code == 404

    for value in ("true", 1, None):
        bad = client.put("/api/admin/users/plain/premium", json={"isPremium": value}, headers=auth_headers("boss-4"))
        assert bad.status_code == 400
        assert bad.json() == {"error": "isPremium debe ser un booleano"}

    forbidden = client.put("/api/admin/users/plain/premium", json={"isPremium": True}, headers=auth_headers("plain"))
    assert forbidden.status_code == 403


def test_update_profile(client, make_user):
    make_user("editor")
    response = client.patch(
        "/api/profile",
        json={"displayName": "Nuevo nombre", "isPrivate": True},
        headers=auth_headers("editor"),
    )
    assert response.status_code == 200
    assert response.json()["displayName"] == "Nuevo nombre"
    assert response.json()["isPrivate"] is True
