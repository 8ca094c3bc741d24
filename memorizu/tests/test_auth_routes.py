from .support import create_user


def session_token(client):
    return client.get("/auth/session").get_json()["csrf_token"]


def test_register_login_logout_flow(client):
    token = session_token(client)
    response = client.post(
        "/auth/register",
        json={"email": "Ana@Example.com", "password": "long-enough", "display_name": "Ana"},
        headers={"X-CSRF-Token": token},
    )
    assert response.status_code == 201
    data = response.get_json()
    assert data["user"]["email"] == "ana@example.com"

    # The session is rotated on login, so the next write needs the new token.
    token = data["csrf_token"]
    assert client.get("/auth/session").get_json()["user"]["email"] == "ana@example.com"
    assert client.get("/api/pages").status_code == 200

    assert client.post("/auth/logout", headers={"X-CSRF-Token": token}).status_code == 200
    assert client.get("/auth/session").get_json()["user"] is None
    assert client.get("/api/pages").status_code == 401


def test_writes_require_csrf_token(client):
    response = client.post("/auth/login", json={"email": "a@example.com", "password": "x"})
    assert response.status_code == 400
    assert response.get_json() == {"error": "Invalid or missing CSRF token."}


def test_login_rejects_bad_credentials(app, client):
    create_user(app, email="owner@example.com", password="correct-horse")
    token = session_token(client)

    wrong = client.post(
        "/auth/login",
        json={"email": "owner@example.com", "password": "battery-staple"},
        headers={"X-CSRF-Token": token},
    )
    unknown = client.post(
        "/auth/login",
        json={"email": "nobody@example.com", "password": "battery-staple"},
        headers={"X-CSRF-Token": token},
    )
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.get_json() == unknown.get_json()

    ok = client.post(
        "/auth/login",
        json={"email": "owner@example.com", "password": "correct-horse"},
        headers={"X-CSRF-Token": token},
    )
    assert ok.status_code == 200


def test_register_validates_input(app, client):
    create_user(app, email="taken@example.com")
    token = session_token(client)
    headers = {"X-CSRF-Token": token}

    assert client.post("/auth/register", json={"email": "bad", "password": "long-enough"}, headers=headers).status_code == 400
    assert client.post("/auth/register", json={"email": "a@b.co", "password": "short"}, headers=headers).status_code == 400
    assert client.post("/auth/register", json=["not", "an", "object"], headers=headers).status_code == 400
    duplicate = client.post("/auth/register", json={"email": "taken@example.com", "password": "long-enough"}, headers=headers)
    assert duplicate.status_code == 409
