from conftest import CDL_DATE, SHOP_DATE, add_instructor, add_truck, auth_headers, enroll, make_user, T0_API

API = "/api/v1"


def test_health(api):
    assert api.get("/health").json() == {"status": "ok"}


def test_register_login_me(api):
    r = api.post(f"{API}/auth/register", json={"email": "Pat@Example.com", "password": "longenough", "fullName": "Pat"})
    assert r.status_code == 200
    token = r.json()["access_token"]
    me = api.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
    assert me["email"] == "pat@example.com"
    assert me["role"] == "client"

    assert api.post(f"{API}/auth/register", json={"email": "pat@example.com", "password": "longenough"}).status_code == 409
    assert api.post(f"{API}/auth/login", json={"email": "pat@example.com", "password": "wrong-one"}).status_code == 401
    r = api.post(f"{API}/auth/login", json={"email": "pat@example.com", "password": "longenough"})
    refreshed = api.post(f"{API}/auth/refresh", params={"refresh_token": r.json()["refresh_token"]})
    assert refreshed.status_code == 200
    # access tokens are not refresh tokens
    assert api.post(f"{API}/auth/refresh", params={"refresh_token": token}).status_code == 401


def test_availability_is_public(api, shop_hours, haircut):
    r = api.get(f"{API}/availability", params={"date": SHOP_DATE, "service_id": haircut.id})
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "open"
    assert body["timezone"] == "America/Chicago"
    assert body["slots"][0] == "09:00"
    assert api.get(f"{API}/availability", params={"date": "2026-13-01", "duration": 30}).status_code == 400
    assert api.get(f"{API}/availability", params={"date": SHOP_DATE}).status_code == 400


def test_booking_conflict_is_409_with_reason(api, db, shop_hours, haircut):
    alice, bob = make_user(db), make_user(db)
    payload = {"serviceId": haircut.id, "date": SHOP_DATE, "time": "10:00", "paymentToken": "pm_card_visa"}
    r = api.post(f"{API}/bookings", json=payload, headers=auth_headers(alice))
    assert r.status_code == 200
    assert r.json()["status"] == "requested"
    assert r.json()["localStart"] == "10:00"

    r = api.post(f"{API}/bookings", json=payload, headers=auth_headers(bob))
    assert r.status_code == 409
    assert r.json()["reason"] == "SlotTaken"

    r = api.post(f"{API}/bookings", json=payload, headers=auth_headers(alice))
    assert r.status_code == 409
    assert r.json()["reason"] == "DuplicateRequest"

    r = api.post(f"{API}/bookings", json={**payload, "time": "07:00"}, headers=auth_headers(bob))
    assert r.json()["reason"] == "OutsideAvailability"

    assert "10:00" not in api.get(f"{API}/availability", params={"date": SHOP_DATE, "duration": 30}).json()["slots"]


def test_unknown_resource_rejected_and_shop_booking_blocks_barbers(api, db, shop_hours, haircut):
    alice, bob, barber = make_user(db), make_user(db), make_user(db, "barber")
    payload = {"serviceId": haircut.id, "date": SHOP_DATE, "time": "10:00", "paymentToken": "pm_card_visa"}
    assert api.post(f"{API}/bookings", json=payload, headers=auth_headers(alice)).status_code == 200

    r = api.post(f"{API}/bookings", json={**payload, "resourceId": "no-such-barber"}, headers=auth_headers(bob))
    assert r.status_code == 400
    r = api.post(f"{API}/bookings", json={**payload, "resourceId": alice.id}, headers=auth_headers(bob))
    assert r.status_code == 400
    r = api.get(f"{API}/availability", params={"date": SHOP_DATE, "duration": 30, "resource_id": "no-such-barber"})
    assert r.status_code == 400

    r = api.post(f"{API}/bookings", json={**payload, "resourceId": barber.id}, headers=auth_headers(bob))
    assert r.status_code == 409
    assert r.json()["reason"] == "SlotTaken"
    slots = api.get(f"{API}/availability", params={"date": SHOP_DATE, "duration": 30, "resource_id": barber.id})
    assert "10:00" not in slots.json()["slots"]


def test_time_off_is_scoped_to_a_product_line(api, db, shop_hours, haircut):
    admin, alice = make_user(db, "admin"), make_user(db)
    r = api.post(f"{API}/admin/time-off", json={"date": SHOP_DATE, "reason": "shop closed"}, headers=auth_headers(admin))
    assert r.json()["productLine"] == "shop"
    payload = {"serviceId": haircut.id, "date": SHOP_DATE, "time": "10:00", "paymentToken": "pm_card_visa"}
    r = api.post(f"{API}/bookings", json=payload, headers=auth_headers(alice))
    assert r.json()["reason"] == "BlackoutConflict"

    listed = api.get(f"{API}/admin/time-off", params={"productLine": "cdl"}, headers=auth_headers(admin)).json()
    assert listed == []


def test_payment_errors_are_400(api, db, shop_hours, haircut):
    alice = make_user(db)
    payload = {"serviceId": haircut.id, "date": SHOP_DATE, "time": "10:00"}
    assert api.post(f"{API}/bookings", json=payload, headers=auth_headers(alice)).status_code == 400
    r = api.post(f"{API}/bookings", json={**payload, "paymentToken": "decline"}, headers=auth_headers(alice))
    assert r.status_code == 400
    assert api.post(f"{API}/bookings", json=payload).status_code == 401


def test_admin_accept_and_client_views(api, db, shop_hours, haircut, payments):
    alice, admin = make_user(db), make_user(db, "admin")
    payload = {"serviceId": haircut.id, "date": SHOP_DATE, "time": "10:00", "paymentToken": "pm_card_visa"}
    booking_id = api.post(f"{API}/bookings", json=payload, headers=auth_headers(alice)).json()["id"]

    r = api.post(f"{API}/admin/bookings/{booking_id}/action", json={"action": "accepted"}, headers=auth_headers(alice))
    assert r.status_code == 403

    r = api.post(f"{API}/admin/bookings/{booking_id}/action", json={"action": "accepted"}, headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json()["status"] == "accepted"
    assert r.json()["paymentStatus"] == "paid"
    assert len(payments.captured) == 1

    mine = api.get(f"{API}/bookings", headers=auth_headers(alice)).json()
    assert [b["id"] for b in mine] == [booking_id]
    assert api.get(f"{API}/bookings/{booking_id}", headers=auth_headers(make_user(db))).status_code == 404

    # charged bookings can't be cancelled by the client
    r = api.post(f"{API}/bookings/{booking_id}/cancel", json={"reason": "sick"}, headers=auth_headers(alice))
    assert r.status_code == 403

    r = api.post(f"{API}/admin/bookings/{booking_id}/cancel", json={"reason": "closed"}, headers=auth_headers(admin))
    assert r.json()["paymentStatus"] == "refunded"

    audit = api.get(f"{API}/admin/bookings/{booking_id}/audit", headers=auth_headers(admin)).json()
    actions = {a["action"] for a in audit}
    assert {"booking.requested", "booking.accepted", "booking.cancelled"} <= actions


def test_staff_booking_is_confirmed(api, db, shop_hours, haircut):
    barber, walk_in = make_user(db, "barber"), make_user(db)
    r = api.post(f"{API}/bookings", headers=auth_headers(barber), json={
        "serviceId": haircut.id, "date": SHOP_DATE, "time": "08:00", "paymentMethod": "cash",
        "clientId": walk_in.id,
    })
    assert r.status_code == 200
    assert r.json()["status"] == "confirmed"
    assert r.json()["clientId"] == walk_in.id
    r = api.post(f"{API}/bookings", headers=auth_headers(walk_in), json={
        "serviceId": haircut.id, "date": SHOP_DATE, "time": "10:00", "clientId": barber.id,
    })
    assert r.status_code == 403


def test_time_off_closes_slots(api, db, shop_hours, haircut):
    admin = make_user(db, "admin")
    r = api.post(f"{API}/admin/time-off", headers=auth_headers(admin), json={
        "date": SHOP_DATE, "startTime": "09:00", "endTime": "10:00", "reason": "meeting",
    })
    assert r.status_code == 200
    slots = api.get(f"{API}/availability", params={"date": SHOP_DATE, "duration": 30}).json()["slots"]
    assert slots[0] == "10:00"

    r = api.post(f"{API}/admin/time-off", headers=auth_headers(admin), json={"date": SHOP_DATE})
    assert r.status_code == 200
    body = api.get(f"{API}/availability", params={"date": SHOP_DATE, "duration": 30}).json()
    assert body["slots"] == []
    assert body["status"] == "blocked"

    r = api.post(f"{API}/admin/time-off", headers=auth_headers(admin), json={
        "startAt": "2026-03-11T10:00:00", "endAt": "2026-03-11T11:00:00",
    })
    assert r.status_code == 400


def test_policy_settings_roundtrip(api, db, shop_hours):
    admin = make_user(db, "admin")
    r = api.put(f"{API}/admin/settings/policy", headers=auth_headers(admin),
                json={"productLine": "shop", "bufferMinutes": 0, "granularityMinutes": 15})
    assert r.status_code == 200
    assert r.json()["policy"]["bufferMinutes"] == 0
    public = api.get(f"{API}/settings/public").json()
    assert public["shop"]["granularityMinutes"] == 15

    r = api.put(f"{API}/admin/settings/policy", headers=auth_headers(admin),
                json={"productLine": "shop", "bufferMinutes": None})
    assert "buffer_minutes" not in r.json()["overrides"]
    assert r.json()["overrides"]["granularity_minutes"] == 15

    bad = api.put(f"{API}/admin/settings/policy", headers=auth_headers(admin),
                  json={"productLine": "shop", "timezone": "Nowhere/Special"})
    assert bad.status_code == 400
    assert api.put(f"{API}/admin/settings/policy", headers=auth_headers(make_user(db, "barber")),
                   json={"bufferMinutes": 5}).status_code == 403


def test_cdl_session_booking_flow(api, db, cdl_modules):
    add_instructor(db, "First", T0_API)
    add_truck(db, "Truck 1", T0_API)
    s1, s2, s3 = make_user(db, "student"), make_user(db, "student"), make_user(db, "student")
    for s in (s1, s2, s3):
        enroll(db, s)
    backing = cdl_modules["backing"]
    body = {"moduleId": backing.id, "date": CDL_DATE, "time": "10:00", "paymentToken": "pm_card_visa"}

    first = api.post(f"{API}/sessions/book", json=body, headers=auth_headers(s1))
    assert first.status_code == 200
    assert first.json()["joined"] is False
    assert first.json()["booking"]["status"] == "confirmed"
    session_id = first.json()["session"]["id"]

    second = api.post(f"{API}/sessions/book", json={"sessionId": session_id, "paymentToken": "pm_card_visa"},
                      headers=auth_headers(s2))
    assert second.json()["joined"] is True
    assert second.json()["session"]["status"] == "full"

    third = api.post(f"{API}/sessions/book", json=body, headers=auth_headers(s3))
    assert third.status_code == 409
    assert third.json()["reason"] == "SessionFull"

    outsider = make_user(db)
    assert api.post(f"{API}/sessions/book", json=body, headers=auth_headers(outsider)).status_code == 403

    dates = api.get(f"{API}/sessions/dates", params={"start": "2026-03-09", "days": 7}).json()["dates"]
    assert dates == ["2026-03-14", "2026-03-15"]


def test_admin_cancels_training_session(api, db, cdl_modules, payments):
    instructor_user = make_user(db, "instructor")
    add_instructor(db, "First", T0_API)
    add_truck(db, "Truck 1", T0_API)
    s1 = make_user(db, "student")
    enroll(db, s1)
    r = api.post(f"{API}/sessions/book", headers=auth_headers(s1), json={
        "moduleId": cdl_modules["backing"].id, "date": CDL_DATE, "time": "10:00", "paymentToken": "pm_card_visa",
    })
    session_id = r.json()["session"]["id"]
    booking_id = r.json()["booking"]["id"]

    r = api.patch(f"{API}/admin/training-sessions/{session_id}", json={"status": "cancelled"},
                  headers=auth_headers(instructor_user))
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    booking = api.get(f"{API}/bookings/{booking_id}", headers=auth_headers(s1)).json()
    assert booking["status"] == "cancelled"
    assert len(payments.voided) == 1


def test_waitlist_join_is_idempotent_and_rate_limited(api, db):
    alice, admin = make_user(db), make_user(db, "admin")
    r = api.post(f"{API}/waitlist", json={"date": SHOP_DATE}, headers=auth_headers(alice))
    assert r.status_code == 200
    entry_id = r.json()["id"]
    again = api.post(f"{API}/waitlist", json={"date": SHOP_DATE}, headers=auth_headers(alice))
    assert again.json()["id"] == entry_id

    assert api.post(f"{API}/waitlist", json={"date": "2026-03-01"}, headers=auth_headers(alice)).status_code == 400
    assert api.post(f"{API}/waitlist", json={"date": "soon"}, headers=auth_headers(alice)).status_code == 400
    assert api.post(f"{API}/waitlist", json={"date": SHOP_DATE}).status_code == 401

    for day in ("2026-03-11", "2026-03-12"):
        assert api.post(f"{API}/waitlist", json={"date": day}, headers=auth_headers(alice)).status_code == 200
    r = api.post(f"{API}/waitlist", json={"date": "2026-03-13"}, headers=auth_headers(alice))
    assert r.status_code == 429

    assert len(api.get(f"{API}/waitlist", headers=auth_headers(alice)).json()) == 3
    listed = api.get(f"{API}/admin/waitlist", params={"date": SHOP_DATE}, headers=auth_headers(admin)).json()
    assert [e["clientId"] for e in listed] == [alice.id]
    assert api.get(f"{API}/admin/waitlist", headers=auth_headers(alice)).status_code == 403

    r = api.patch(f"{API}/admin/waitlist/{entry_id}", json={"status": "notified"}, headers=auth_headers(admin))
    assert r.json()["status"] == "notified"
    assert api.delete(f"{API}/waitlist/{entry_id}", headers=auth_headers(alice)).json()["status"] == "removed"


def test_instructor_logs_hours(api, db, cdl_modules, shop_hours, haircut):
    instructor_user, barber = make_user(db, "instructor"), make_user(db, "barber")
    add_instructor(db, "First", T0_API)
    add_truck(db, "Truck 1", T0_API)
    s1 = make_user(db, "student")
    enroll(db, s1)
    r = api.post(f"{API}/sessions/book", headers=auth_headers(s1), json={
        "moduleId": cdl_modules["road"].id, "date": CDL_DATE, "time": "10:00", "paymentToken": "pm_card_visa",
    })
    booking_id = r.json()["booking"]["id"]
    url = f"{API}/admin/bookings/{booking_id}/log-hours"

    assert api.post(url, json={"hours": 13}, headers=auth_headers(instructor_user)).status_code == 400
    assert api.post(url, json={"hours": -1}, headers=auth_headers(instructor_user)).status_code == 400
    assert api.post(url, json={"hours": 1}, headers=auth_headers(barber)).status_code == 403

    r = api.post(url, json={"hours": 1.5}, headers=auth_headers(instructor_user))
    assert r.status_code == 200
    assert r.json()["status"] == "completed"
    assert r.json()["hoursLogged"] == 1.5
    assert r.json()["paymentStatus"] == "paid"

    # a correction replaces the figure
    api.post(url, json={"hours": 2}, headers=auth_headers(instructor_user))
    summary = api.get(f"{API}/admin/students/{s1.id}/hours", headers=auth_headers(instructor_user)).json()
    assert summary["totalHours"] == 2
    assert len(summary["entries"]) == 1
    assert summary["entries"][0]["sessionDate"] == CDL_DATE
    assert api.get(f"{API}/sessions/hours", headers=auth_headers(s1)).json()["totalHours"] == 2

    shop = api.post(f"{API}/bookings", headers=auth_headers(make_user(db)),
                    json={"serviceId": haircut.id, "date": SHOP_DATE, "time": "10:00", "paymentToken": "pm_card_visa"})
    admin = make_user(db, "admin")
    r = api.post(f"{API}/admin/bookings/{shop.json()['id']}/log-hours", json={"hours": 1}, headers=auth_headers(admin))
    assert r.status_code == 400
