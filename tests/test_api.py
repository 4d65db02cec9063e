from fastapi.testclient import TestClient

from chore_rewards.main import app


def signed_in(email, full_name):
    client = TestClient(app)
    resp = client.post("/register", json={"email": email, "password": "pw", "full_name": full_name})
    assert resp.status_code == 200
    return client, resp.json()


def household():
    admin_client, admin = signed_in("parent@example.com", "Parent")
    family = admin_client.post("/families", json={"name": "Home"}).json()
    member_client, member = signed_in("kid@example.com", "Kid")
    member_client.post("/families/join", json={"family_id": family["id"]})
    return admin_client, member_client, member, family


def test_requests_need_a_session(client):
    assert client.get("/tasks").status_code == 401
    assert client.get("/notifications").status_code == 401
    assert client.get("/health").json() == {"status": "ok"}


def test_family_is_required_for_chores():
    client, _ = signed_in("solo@example.com", "Solo")
    resp = client.get("/tasks")
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Create or join a family first"


def test_member_cannot_create_task():
    admin_client, member_client, member, _ = household()
    resp = member_client.post(
        "/tasks", json={"title": "Clean", "points": 5, "assigned_to": member["id"]}
    )
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Only family admins can create tasks"
    assert admin_client.get("/tasks").json() == []


def test_family_members_and_roles():
    admin_client, member_client, _, family = household()
    assert member_client.get("/families/me").json()["id"] == family["id"]
    members = admin_client.get("/families/me/members").json()
    assert [(m["full_name"], m["role"]) for m in members] == [("Parent", "admin"), ("Kid", "member")]
    assert all("hashed_password" not in m for m in members)

    resp = member_client.post("/families/join", json={"family_id": "unknown"})
    assert resp.status_code == 404


def test_invalid_transition_and_field_errors():
    admin_client, member_client, member, _ = household()
    bad_points = admin_client.post(
        "/tasks", json={"title": "Clean", "points": 0, "assigned_to": member["id"]}
    )
    assert bad_points.status_code == 400

    task = admin_client.post(
        "/tasks", json={"title": "Clean", "points": 5, "assigned_to": member["id"]}
    ).json()
    skipped = member_client.post(f"/tasks/{task['id']}/status", json={"status": "completed"})
    assert skipped.status_code == 409
    unknown = member_client.post(f"/tasks/{task['id']}/status", json={"status": "done"})
    assert unknown.status_code == 400


def test_delete_task_and_reward():
    admin_client, member_client, member, _ = household()
    task = admin_client.post(
        "/tasks", json={"title": "Clean", "points": 5, "assigned_to": member["id"]}
    ).json()
    assert member_client.delete(f"/tasks/{task['id']}").status_code == 403
    assert admin_client.delete(f"/tasks/{task['id']}").status_code == 200
    assert admin_client.delete(f"/tasks/{task['id']}").status_code == 404

    reward = admin_client.post("/rewards", json={"title": "Park", "points_required": 5}).json()
    assert admin_client.delete(f"/rewards/{reward['id']}").status_code == 200
    assert admin_client.get("/rewards").json() == []
    assert admin_client.delete(f"/rewards/{reward['id']}").status_code == 404
    assert member_client.post(f"/rewards/{reward['id']}/claim").status_code == 404


def test_claim_without_points_is_refused():
    admin_client, member_client, _, _ = household()
    reward = admin_client.post("/rewards", json={"title": "Park", "points_required": 5}).json()
    resp = member_client.post(f"/rewards/{reward['id']}/claim")
    assert resp.status_code == 503
    assert resp.json()["detail"] == "Not enough points for this reward."
    assert member_client.get("/claims").json() == []


def test_reward_edits_stay_inside_family():
    admin_client, member_client, _, _ = household()
    reward = admin_client.post("/rewards", json={"title": "Park", "points_required": 5}).json()
    edited = admin_client.patch(f"/rewards/{reward['id']}", json={"points_required": 7})
    assert edited.json()["points_required"] == 7
    assert member_client.patch(f"/rewards/{reward['id']}", json={"title": "Zoo"}).status_code == 403

    outsider_client, _ = signed_in("other@example.com", "Other")
    outsider_client.post("/families", json={"name": "Elsewhere"})
    assert outsider_client.patch(f"/rewards/{reward['id']}", json={"title": "Zoo"}).status_code == 404
    assert outsider_client.get("/claims/pending").json() == []


def test_notifications_can_be_marked_read():
    admin_client, member_client, member, _ = household()
    admin_client.post("/tasks", json={"title": "Clean", "points": 5, "assigned_to": member["id"]})
    admin_client.post("/tasks", json={"title": "Dishes", "points": 5, "assigned_to": member["id"]})

    notes = member_client.get("/notifications").json()
    assert len(notes) == 2
    assert admin_client.post(f"/notifications/{notes[0]['id']}/read").status_code == 404
    read = member_client.post(f"/notifications/{notes[0]['id']}/read")
    assert read.json()["is_read"] is True
    assert member_client.get("/notifications/unread-count").json() == {"count": 1}
    assert member_client.post("/notifications/read-all").json() == {"updated": 1}
    assert member_client.get("/notifications/unread-count").json() == {"count": 0}
