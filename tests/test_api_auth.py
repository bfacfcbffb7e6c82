def _register(client, email="maria@example.com", password="segredo123"):
    return client.post("/auth/register", json={"name": "Maria", "email": email, "password": password})


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_register_login_and_me(client):
    resp = _register(client, email="Maria@Example.com")
    assert resp.status_code == 201
    token = resp.json()["access_token"]

    me = client.get("/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    body = me.json()
    assert body["email"] == "maria@example.com"
    assert body["plan"] == "free"
    assert body["qr_limit"] == 5
    assert body["qr_used"] == 0

    login = client.post("/auth/login", data={"username": "maria@example.com", "password": "segredo123"})
    assert login.status_code == 200
    assert login.json()["token_type"] == "bearer"


def test_duplicate_email_conflicts(client):
    assert _register(client).status_code == 201
    assert _register(client, email="MARIA@example.com").status_code == 409


def test_register_validates_body(client):
    assert _register(client, email="não-é-email").status_code == 422
    assert _register(client, password="123").status_code == 422


def test_me_requires_valid_token(client):
    assert client.get("/me").status_code == 401
    assert client.get("/me", headers={"Authorization": "Bearer lixo"}).status_code == 401


def test_failed_logins_are_rate_limited(client):
    _register(client)
    for _ in range(5):
        resp = client.post("/auth/login", data={"username": "maria@example.com", "password": "errada"})
        assert resp.status_code == 400

    blocked = client.post("/auth/login", data={"username": "maria@example.com", "password": "segredo123"})
    assert blocked.status_code == 429
    assert int(blocked.headers["Retry-After"]) > 0


def test_password_limit_counts_bytes(client):
    # 40 caracteres, 80 bytes em UTF-8
    assert _register(client, password="é" * 40).status_code == 422
    assert _register(client, password="é" * 36).status_code == 201
