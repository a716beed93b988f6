from app import safe_redirect_target


def test_login_page(client):
    resp = client.get("/login")
    assert resp.status_code == 200
    assert "Welcome Back" in resp.get_data(as_text=True)


def test_admin_login_lands_on_admin(client, fake_backend):
    fake_backend.add_user("owner@example.com", "s3cret", admin=True)
    resp = client.post("/login", data={"email": "owner@example.com", "password": "s3cret"})

    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/admin")
    with client.session_transaction() as sess:
        assert sess["user"]["email"] == "owner@example.com"
        assert sess["is_admin"] is True
        assert sess["access_token"].startswith("token-")
    assert client.get("/admin").status_code == 200


def test_customer_login_honours_redirect(client, fake_backend):
    fake_backend.add_user("asha@example.com", "pw")
    resp = client.post("/login", data={"email": "asha@example.com", "password": "pw", "redirect": "/cart"})

    assert resp.headers["Location"].endswith("/cart")
    with client.session_transaction() as sess:
        assert sess["is_admin"] is False
    assert client.get("/admin").status_code == 302


def test_login_ignores_external_redirect(client, fake_backend):
    fake_backend.add_user("asha@example.com", "pw")
    resp = client.post(
        "/login",
        data={"email": "asha@example.com", "password": "pw", "redirect": "//evil.example.com"},
    )
    assert resp.headers["Location"] == "/"


def test_wrong_password_is_flashed(client, fake_backend):
    fake_backend.add_user("asha@example.com", "pw")
    resp = client.post("/login", data={"email": "asha@example.com", "password": "nope"})

    assert resp.status_code == 200
    assert "Invalid login credentials" in resp.get_data(as_text=True)


def test_missing_credentials(client):
    resp = client.post("/login", data={"email": "", "password": ""})
    assert "Enter your e-mail and password" in resp.get_data(as_text=True)


def test_logout_keeps_cart(customer, fake_backend):
    customer.post("/api/cart/add", json={"id": "1"})
    resp = customer.post("/logout")

    assert resp.status_code == 302
    assert fake_backend.signed_out
    with customer.session_transaction() as sess:
        assert "user" not in sess
        assert "access_token" not in sess
        assert sess["cart"]


def test_signed_in_admin_visiting_login_goes_to_admin(admin):
    resp = admin.get("/login")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/admin")


def test_safe_redirect_target():
    assert safe_redirect_target("/cart") == "/cart"
    assert safe_redirect_target("//evil.com") is None
    assert safe_redirect_target("https://evil.com") is None
    assert safe_redirect_target("/\\evil.com") is None
    assert safe_redirect_target(None) is None
