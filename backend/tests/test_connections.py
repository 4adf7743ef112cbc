def _users(helpers):
    alice = helpers["make_user"]("alice@test.edu")
    bob = helpers["make_user"]("bob@test.edu")
    alice_headers = helpers["auth_header"](helpers["login"]("alice@test.edu"))
    bob_headers = helpers["auth_header"](helpers["login"]("bob@test.edu"))
    return alice, bob, alice_headers, bob_headers


def test_request_and_accept(helpers):
    client = helpers["client"]
    alice, bob, alice_headers, bob_headers = _users(helpers)

    resp = client.post(
        "/api/connections", json={"addressee_id": bob.id, "message": "Loved your talk"}, headers=alice_headers
    )
    assert resp.status_code == 201
    connection = resp.json()
    assert connection["status"] == "pending"
    assert connection["requester_id"] == alice.id

    forbidden = client.put(f"/api/connections/{connection['id']}", json={"action": "accept"}, headers=alice_headers)
    assert forbidden.status_code == 403

    resp = client.put(f"/api/connections/{connection['id']}", json={"action": "accept"}, headers=bob_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"
    assert resp.json()["responded_at"] is not None

    resp = client.put(f"/api/connections/{connection['id']}", json={"action": "decline"}, headers=bob_headers)
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "connection_already_responded"

    listed = client.get("/api/connections", params={"status": "accepted"}, headers=bob_headers)
    assert [item["id"] for item in listed.json()] == [connection["id"]]


def test_cannot_connect_to_self(helpers):
    client = helpers["client"]
    alice, _, alice_headers, _ = _users(helpers)

    resp = client.post("/api/connections", json={"addressee_id": alice.id}, headers=alice_headers)
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "self_connection"


def test_duplicate_in_either_direction_is_rejected(helpers):
    client = helpers["client"]
    alice, bob, alice_headers, bob_headers = _users(helpers)

    assert client.post("/api/connections", json={"addressee_id": bob.id}, headers=alice_headers).status_code == 201
    resp = client.post("/api/connections", json={"addressee_id": alice.id}, headers=bob_headers)
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "duplicate_connection"


def test_declined_request_allows_a_new_one(helpers):
    client = helpers["client"]
    alice, bob, alice_headers, bob_headers = _users(helpers)

    first = client.post("/api/connections", json={"addressee_id": bob.id}, headers=alice_headers).json()
    resp = client.put(f"/api/connections/{first['id']}", json={"action": "decline"}, headers=bob_headers)
    assert resp.json()["status"] == "declined"

    assert client.post("/api/connections", json={"addressee_id": bob.id}, headers=alice_headers).status_code == 201


def test_either_party_can_remove(helpers):
    client = helpers["client"]
    _, bob, alice_headers, bob_headers = _users(helpers)
    helpers["make_user"]("eve@test.edu")
    eve_headers = helpers["auth_header"](helpers["login"]("eve@test.edu"))

    connection = client.post("/api/connections", json={"addressee_id": bob.id}, headers=alice_headers).json()
    assert client.delete(f"/api/connections/{connection['id']}", headers=eve_headers).status_code == 403
    assert client.delete(f"/api/connections/{connection['id']}", headers=bob_headers).status_code == 200
    assert client.get("/api/connections", headers=alice_headers).json() == []


def test_request_to_unknown_user_returns_404(helpers):
    client = helpers["client"]
    _, _, alice_headers, _ = _users(helpers)

    resp = client.post("/api/connections", json={"addressee_id": 98765}, headers=alice_headers)
    assert resp.status_code == 404
