"""API tests for registration, login, profiles and the auth gate."""

from chorechamp.services.auth_service import auth_service
from chorechamp.services.email_service import EmailDeliveryError
from tests.conftest import auth, register_child, register_parent


def test_register_parent_returns_token_and_hides_password(client):
    response = client.post(
        "/api/auth/register/parent",
        json={"username": "mom", "email": "Mom@Example.com", "password": "secret123"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["role"] == "parent"
    assert body["user"]["email"] == "mom@example.com"
    assert "hashed_password" not in body["user"]
    assert auth_service.verify_token(body["access_token"]) == body["user"]["id"]


def test_duplicate_username_is_rejected(client):
    register_parent(client, "mom")
    response = client.post(
        "/api/auth/register/parent",
        json={"username": "MOM", "email": "other@example.com", "password": "secret123"},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Username already exists"


def test_duplicate_email_is_rejected(client):
    register_parent(client, "mom", "shared@example.com")
    response = client.post(
        "/api/auth/register/parent",
        json={"username": "dad", "email": "shared@example.com", "password": "secret123"},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Email already exists"


def test_short_password_names_the_field(client):
    response = client.post(
        "/api/auth/register/parent",
        json={"username": "mom", "email": "mom@example.com", "password": "123"},
    )
    assert response.status_code == 400
    assert "password" in response.json()["detail"]


def test_login_with_wrong_password(client):
    register_parent(client, "mom")
    response = client.post("/api/auth/login", json={"username": "mom", "password": "wrong-password"})
    assert response.status_code == 401


def test_login_and_profile(client):
    register_parent(client, "mom")
    login = client.post("/api/auth/login", json={"username": "mom", "password": "secret123"})
    assert login.status_code == 200

    profile = client.get("/api/auth/profile", headers=auth(login.json()["access_token"]))
    assert profile.status_code == 200
    assert profile.json()["username"] == "mom"


def test_missing_or_bad_token_is_401(client):
    assert client.get("/api/auth/profile").status_code == 401
    response = client.get("/api/auth/profile", headers=auth("not-a-jwt"))
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_token_for_deleted_user_is_401(client):
    parent = register_parent(client, "mom")
    kid = register_child(client, parent["token"], "kid")
    client.delete(f"/api/auth/children/{kid['user']['id']}", headers=auth(parent["token"]))

    assert client.get("/api/auth/profile", headers=auth(kid["token"])).status_code == 401


def test_child_cannot_use_parent_routes(client):
    parent = register_parent(client, "mom")
    kid = register_child(client, parent["token"], "kid")

    response = client.post(
        "/api/auth/register/child",
        json={"username": "sibling", "first_name": "Sib", "password": "secret123"},
        headers=auth(kid["token"]),
    )
    assert response.status_code == 403


def test_register_child_links_parent_and_sends_welcome(client, sent_emails):
    parent = register_parent(client, "mom")
    kid = register_child(client, parent["token"], "kid", email="kid@example.com")

    assert kid["user"]["role"] == "child"
    assert kid["user"]["parent_id"] == parent["user"]["id"]
    assert kid["user"]["points"] == 0
    sent_emails.assert_called_once()
    assert sent_emails.call_args.args[0] == "kid@example.com"


def test_welcome_email_failure_does_not_fail_registration(client, sent_emails):
    sent_emails.side_effect = EmailDeliveryError("smtp down")
    parent = register_parent(client, "mom")

    response = client.post(
        "/api/auth/register/child",
        json={"username": "kid", "first_name": "Kid", "password": "secret123", "email": "kid@example.com"},
        headers=auth(parent["token"]),
    )
    assert response.status_code == 201


def test_update_child_and_list_children(client):
    parent = register_parent(client, "mom")
    kid = register_child(client, parent["token"], "kid")

    response = client.patch(
        f"/api/auth/child/{kid['user']['id']}",
        json={"username": "kiddo", "chore_rotation_order": 3},
        headers=auth(parent["token"]),
    )
    assert response.status_code == 200
    assert response.json()["username"] == "kiddo"

    # The old username is released, the new one works for login
    assert auth_service.get_user_by_username("kid") is None
    login = client.post("/api/auth/login", json={"username": "kiddo", "password": "secret123"})
    assert login.status_code == 200

    children = client.get("/api/users/children", headers=auth(parent["token"])).json()
    assert [c["username"] for c in children] == ["kiddo"]


def test_other_parent_cannot_edit_or_view_child(client):
    parent = register_parent(client, "mom")
    stranger = register_parent(client, "stranger")
    kid = register_child(client, parent["token"], "kid")

    response = client.patch(
        f"/api/auth/child/{kid['user']['id']}", json={"first_name": "X"}, headers=auth(stranger["token"])
    )
    assert response.status_code == 404
    assert client.get(f"/api/users/{kid['user']['id']}", headers=auth(stranger["token"])).status_code == 403
    assert client.get(f"/api/users/{kid['user']['id']}", headers=auth(parent["token"])).status_code == 200


def test_password_change_requires_current_password(client):
    parent = register_parent(client, "mom")

    response = client.put("/api/auth/profile", json={"new_password": "newsecret"}, headers=auth(parent["token"]))
    assert response.status_code == 400

    response = client.put(
        "/api/auth/profile",
        json={"current_password": "secret123", "new_password": "newsecret"},
        headers=auth(parent["token"]),
    )
    assert response.status_code == 200
    login = client.post("/api/auth/login", json={"username": "mom", "password": "newsecret"})
    assert login.status_code == 200


def test_profile_email_conflict(client):
    register_parent(client, "mom", "mom@example.com")
    dad = register_parent(client, "dad", "dad@example.com")

    response = client.put("/api/auth/profile", json={"email": "mom@example.com"}, headers=auth(dad["token"]))
    assert response.status_code == 400
    assert response.json()["detail"] == "This email is already in use"


def test_profile_edit_keeps_points_credited_meanwhile(client):
    parent = register_parent(client, "mom")
    kid = register_child(client, parent["token"], "kid")
    previous = auth_service.get_user_by_id(kid["user"]["id"])
    edited = previous.model_copy(update={"first_name": "Kiddo"})

    # A completion lands between the read and the write
    fresh = auth_service.get_user_by_id(previous.id)
    fresh.points = 7
    auth_service.update_user(fresh)

    stored = auth_service.update_identity(edited, previous)
    assert stored.points == 7
    assert stored.first_name == "Kiddo"
    assert auth_service.get_user_by_id(previous.id).points == 7


def test_editing_a_deleted_child_is_404(client, monkeypatch):
    parent = register_parent(client, "mom")
    kid = register_child(client, parent["token"], "kid")
    real_update = auth_service.update_identity

    def delete_first(user, previous):
        auth_service.delete_user(previous)
        return real_update(user, previous)

    monkeypatch.setattr(auth_service, "update_identity", delete_first)
    response = client.patch(
        f"/api/auth/child/{kid['user']['id']}", json={"first_name": "Kiddo"}, headers=auth(parent["token"])
    )
    assert response.status_code == 404
    assert auth_service.get_user_by_id(kid["user"]["id"]) is None
