from academia_world import models


def _forum(helpers, token, event_id, **fields):
    payload = {"title": "Questions for the speakers", "forum_type": "q_and_a"}
    payload.update(fields)
    resp = helpers["client"].post(
        f"/api/events/{event_id}/forums", json=payload, headers=helpers["auth_header"](token)
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_host_opens_forum_and_attendees_post(helpers):
    client = helpers["client"]
    db = helpers["db"]
    host = helpers["make_user"]("host@test.edu")
    event = helpers["make_event"](host)
    host_token = helpers["login"]("host@test.edu")
    attendee = helpers["make_user"]("a@test.edu")
    db.add(models.Registration(user_id=attendee.id, event_id=event.id, status="registered"))
    db.commit()

    forum = _forum(helpers, host_token, event.id, description="Ask anything")
    assert forum["forum_type"] == "q_and_a"
    assert forum["is_active"] is True
    assert forum["post_count"] == 0

    attendee_headers = helpers["auth_header"](helpers["login"]("a@test.edu"))
    resp = client.post(f"/api/forums/{forum['id']}/posts", json={"content": "Slides?"}, headers=attendee_headers)
    assert resp.status_code == 201
    assert resp.json()["user_id"] == attendee.id

    resp = client.post(
        f"/api/forums/{forum['id']}/posts",
        json={"content": "Uploaded after the talk."},
        headers=helpers["auth_header"](host_token),
    )
    assert resp.status_code == 201

    posts = client.get(f"/api/forums/{forum['id']}/posts", headers=attendee_headers).json()
    assert posts["total"] == 2
    assert [post["content"] for post in posts["items"]] == ["Slides?", "Uploaded after the talk."]

    listed = client.get(f"/api/events/{event.id}/forums", headers=attendee_headers).json()
    assert [item["id"] for item in listed] == [forum["id"]]
    assert listed[0]["post_count"] == 2


def test_only_host_or_admin_opens_forums(helpers):
    client = helpers["client"]
    host = helpers["make_user"]("host@test.edu")
    event = helpers["make_event"](host)
    helpers["make_user"]("other@test.edu")
    helpers["make_admin"]()

    resp = client.post(
        f"/api/events/{event.id}/forums",
        json={"title": "Side channel"},
        headers=helpers["auth_header"](helpers["login"]("other@test.edu")),
    )
    assert resp.status_code == 403

    forum = _forum(helpers, helpers["login"]("admin@test.edu", "admin12345"), event.id, title="Announcements")
    assert forum["forum_type"] == "q_and_a"
    assert forum["created_by"] != host.id


def test_outsiders_and_closed_forums_reject_posts(helpers):
    client = helpers["client"]
    db = helpers["db"]
    host = helpers["make_user"]("host@test.edu")
    event = helpers["make_event"](host)
    helpers["make_user"]("outsider@test.edu")
    forum = _forum(helpers, helpers["login"]("host@test.edu"), event.id)
    outsider_headers = helpers["auth_header"](helpers["login"]("outsider@test.edu"))

    resp = client.post(f"/api/forums/{forum['id']}/posts", json={"content": "Hi"}, headers=outsider_headers)
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "forbidden"

    row = db.get(models.DiscussionForum, forum["id"])
    row.is_active = False
    db.commit()
    resp = client.post(
        f"/api/forums/{forum['id']}/posts",
        json={"content": "Closing remarks"},
        headers=helpers["auth_header"](helpers["login"]("host@test.edu")),
    )
    assert resp.status_code == 403
    assert client.get(f"/api/events/{event.id}/forums", headers=outsider_headers).json() == []


def test_banned_event_blocks_host_forums(helpers):
    host = helpers["make_user"]("host@test.edu")
    event = helpers["make_event"](host, status="banned")

    resp = helpers["client"].post(
        f"/api/events/{event.id}/forums",
        json={"title": "Still here"},
        headers=helpers["auth_header"](helpers["login"]("host@test.edu")),
    )
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "event_banned"


def test_forum_routes_need_login_and_existing_targets(helpers):
    client = helpers["client"]
    host = helpers["make_user"]("host@test.edu")
    event = helpers["make_event"](host)
    headers = helpers["auth_header"](helpers["login"]("host@test.edu"))

    assert client.get(f"/api/events/{event.id}/forums").status_code == 401
    assert client.get("/api/forums/999", headers=headers).status_code == 404
    assert client.post("/api/forums/999/posts", json={"content": "x"}, headers=headers).status_code == 404
    resp = client.post(f"/api/events/{event.id}/forums", json={"title": "Bad", "forum_type": "chat"}, headers=headers)
    assert resp.status_code == 422


def test_admin_removes_post_written_through_api(helpers):
    client = helpers["client"]
    db = helpers["db"]
    host = helpers["make_user"]("host@test.edu")
    event = helpers["make_event"](host)
    host_headers = helpers["auth_header"](helpers["login"]("host@test.edu"))
    forum = _forum(helpers, helpers["login"]("host@test.edu"), event.id)
    post = client.post(
        f"/api/forums/{forum['id']}/posts", json={"content": "Buy cheap watches"}, headers=host_headers
    ).json()

    helpers["make_admin"]()
    admin_headers = helpers["auth_header"](helpers["login"]("admin@test.edu", "admin12345"))
    resp = client.request("DELETE", f"/api/admin/posts/{post['id']}", json={"reason": "spam"}, headers=admin_headers)
    assert resp.status_code == 200

    assert client.get(f"/api/forums/{forum['id']}/posts", headers=host_headers).json()["total"] == 0
    log = db.query(models.AdminLog).filter(models.AdminLog.action == "post_delete").one()
    assert log.target_id == post["id"]
    assert log.meta["post_data"]["content"] == "Buy cheap watches"


def test_admin_stats_summarise_platform(helpers):
    client = helpers["client"]
    db = helpers["db"]
    host = helpers["make_user"]("host@test.edu")
    event = helpers["make_event"](host)
    helpers["make_event"](host, status="banned", title="Spam meetup")
    attendee = helpers["make_user"]("a@test.edu")
    helpers["make_user"]("gone@test.edu", is_banned=True)
    db.add(models.Registration(user_id=attendee.id, event_id=event.id, status="registered"))
    db.commit()
    _forum(helpers, helpers["login"]("host@test.edu"), event.id)

    helpers["make_admin"]()
    headers = helpers["auth_header"](helpers["login"]("admin@test.edu", "admin12345"))
    resp = client.get("/api/admin/stats", params={"days": 7}, headers=headers)
    assert resp.status_code == 200
    stats = resp.json()
    assert stats["days"] == 7
    assert stats["total_users"] == 4
    assert stats["banned_users"] == 1
    assert stats["total_events"] == 2
    assert stats["banned_events"] == 1
    assert stats["total_registrations"] == 1
    assert stats["total_forums"] == 1
    assert stats["total_forum_posts"] == 0
    assert sum(day["registrations"] for day in stats["registrations_by_day"]) == 1

    assert client.get("/api/admin/stats", params={"days": 0}, headers=headers).status_code == 400
