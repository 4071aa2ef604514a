"""
Login gate tests, driven through the FastAPI app.
Run with: python3 -m pytest tests/test_login_gate.py -v
"""

import asyncio
import re
import socket
import sys
import os

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from xterminal_broker.core.config import Settings
from xterminal_broker.gate import is_public_asset
from xterminal_broker.main import StartupError, create_app, lifespan
from xterminal_broker.schemas import LoginForm

_COOKIE_RE = re.compile(r"mgs=([0-9a-f]{16});")


# ── Helpers ──────────────────────────────────────────────────────────────────

class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def document_root(tmp_path):
    www = tmp_path / "www"
    www.mkdir()
    (www / "xterminal.html").write_text("<html>terminal</html>")
    (www / "login.html").write_text("<html>login</html>")
    (www / "style.css").write_text("body { color: black; }")
    (www / "xterminal.js").write_text("console.log('hi');")
    (www / "about.html").write_text("<html>about</html>")
    return www


@pytest.fixture
def clock():
    return FakeClock()


def make_app(document_root, clock, **overrides):
    settings = Settings(document_root=str(document_root), use_ssl=False, **overrides)
    return create_app(settings, clock=clock)


@pytest.fixture
def app(document_root, clock):
    return make_app(document_root, clock)


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)


def login(client, username="xterminal", password="xterminal"):
    return client.post("/login.html", data={"username": username, "password": password})


def token_from(response) -> str:
    match = _COOKIE_RE.search(response.headers.get("set-cookie", ""))
    assert match, f"No session cookie in {response.headers.get('set-cookie')!r}"
    return match.group(1)


def with_cookie(token):
    return {"Cookie": f"mgs={token}"}


# ── Login submission ──────────────────────────────────────────────────────────

def test_default_login_redirects_home_with_cookie(client, app):
    resp = login(client)

    assert resp.status_code == 302
    assert resp.headers["location"] == "/"
    set_cookie = resp.headers["set-cookie"]
    token = token_from(resp)
    assert len(token) == 16
    assert "Path=/" in set_cookie
    assert len(app.state.session_store) == 1


def test_extra_credentials_from_settings(document_root, clock):
    app = make_app(document_root, clock, http_auth=["admin:s3cret"])
    client = TestClient(app, follow_redirects=False)

    resp = login(client, "admin", "s3cret")
    assert resp.status_code == 302
    assert resp.headers["location"] == "/"


def test_session_belongs_to_logged_in_user(client, app):
    token = token_from(login(client))
    session = app.state.session_store.lookup(int(token, 16))
    assert session.username == "xterminal"


def test_bad_password_creates_no_session(client, app):
    resp = login(client, password="wrong")

    assert resp.status_code == 302
    assert resp.headers["location"] == "/login.html"
    assert "set-cookie" not in resp.headers
    assert len(app.state.session_store) == 0


@pytest.mark.parametrize("data", [
    {},
    {"username": "xterminal"},
    {"username": "", "password": "xterminal"},
    {"username": "xterminal", "password": "x" * 50},
    {"username": "xterminal", "password": "\u00e9" * 25},
])
def test_incomplete_or_oversized_form_creates_no_session(client, app, data):
    resp = client.post("/login.html", data=data)

    assert resp.status_code == 302
    assert resp.headers["location"] == "/login.html"
    assert len(app.state.session_store) == 0


def test_form_limit_counts_utf8_bytes():
    assert LoginForm(username="xterminal", password="é" * 24).password == "é" * 24
    with pytest.raises(ValueError):
        LoginForm(username="xterminal", password="é" * 25)
    with pytest.raises(ValueError):
        LoginForm(username="x" * 50, password="xterminal")


def test_bad_login_with_live_session_shows_login_page(client):
    token = token_from(login(client))

    resp = client.post(
        "/login.html",
        data={"username": "xterminal", "password": "wrong"},
        headers=with_cookie(token),
    )
    assert resp.status_code == 200
    assert "login" in resp.text
    assert "set-cookie" not in resp.headers


def test_session_limit_gives_503(document_root, clock):
    app = make_app(document_root, clock, max_sessions=1)
    client = TestClient(app, follow_redirects=False)

    assert login(client).status_code == 302
    resp = login(client)

    assert resp.status_code == 503
    assert resp.content == b""
    assert len(app.state.session_store) == 1


# ── Session check ─────────────────────────────────────────────────────────────

def test_root_without_cookie_redirects_to_login(client):
    resp = client.get("/")
    assert resp.status_code == 302
    assert resp.headers["location"] == "/login.html"


def test_other_pages_without_cookie_redirect_to_login(client):
    resp = client.get("/about.html")
    assert resp.status_code == 302
    assert resp.headers["location"] == "/login.html"


def test_garbage_cookie_redirects_to_login(client):
    for value in ["nothex", "0", "1" * 40]:
        resp = client.get("/", headers=with_cookie(value))
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login.html"


def test_unknown_token_redirects_to_login(client):
    resp = client.get("/", headers=with_cookie("00000000deadbeef"))
    assert resp.status_code == 302


def test_valid_cookie_serves_index(client):
    token = token_from(login(client))

    resp = client.get("/", headers=with_cookie(token))
    assert resp.status_code == 200
    assert "terminal" in resp.text

    resp = client.get("/about.html", headers=with_cookie(token.upper()))
    assert resp.status_code == 200
    assert "about" in resp.text


def test_request_touches_session(client, app, clock):
    token = token_from(login(client))
    clock.now += 20
    client.get("/", headers=with_cookie(token))

    session = app.state.session_store.lookup(int(token, 16))
    assert session.last_used == 1020.0
    assert session.created == 1000.0


# ── Public pages and assets ───────────────────────────────────────────────────

def test_login_page_is_public(client):
    resp = client.get("/login.html")
    assert resp.status_code == 200
    assert "login" in resp.text


def test_stylesheet_served_without_session(client):
    resp = client.get("/style.css")
    assert resp.status_code == 200
    assert "color" in resp.text


def test_script_served_without_session(client):
    resp = client.get("/xterminal.js")
    assert resp.status_code == 200


def test_missing_asset_is_not_redirected(client):
    assert client.get("/missing.js").status_code == 404


def test_is_public_asset():
    assert is_public_asset("/static/app.js")
    assert is_public_asset("/theme.css")
    assert not is_public_asset("/")
    assert not is_public_asset("/app.js.html")
    assert not is_public_asset("/login.html")


# ── Expiry ────────────────────────────────────────────────────────────────────

def test_swept_session_redirects_to_login(client, app, clock):
    token = token_from(login(client))

    clock.now = 1031.0
    app.state.sweeper.run_once()

    clock.now = 1032.0
    resp = client.get("/", headers=with_cookie(token))
    assert resp.status_code == 302
    assert resp.headers["location"] == "/login.html"


def test_recently_used_session_survives_sweep(client, app, clock):
    token = token_from(login(client))

    clock.now = 1029.0
    assert client.get("/", headers=with_cookie(token)).status_code == 200

    clock.now = 1055.0
    app.state.sweeper.run_once()
    assert client.get("/", headers=with_cookie(token)).status_code == 200


# ── Startup ───────────────────────────────────────────────────────────────────

def test_missing_document_root_is_fatal(tmp_path, clock):
    with pytest.raises(StartupError):
        make_app(tmp_path / "nope", clock)


def test_bad_credential_entry_is_fatal(document_root, clock):
    with pytest.raises(StartupError):
        make_app(document_root, clock, http_auth=["nocolon"])


# ── Lifespan ──────────────────────────────────────────────────────────────────

def test_serving_does_not_wait_for_broker(document_root, clock, monkeypatch):
    async def never_connects(*args, **kwargs):
        await asyncio.Event().wait()

    monkeypatch.setattr(asyncio, "open_connection", never_connects)
    app = make_app(document_root, clock)

    with TestClient(app, follow_redirects=False) as client:
        assert app.state.sweeper.is_running
        assert client.get("/login.html").status_code == 200
        assert client.get("/").headers["location"] == "/login.html"
        assert not app.state.broker_client.is_connected

    assert not app.state.sweeper.is_running


def test_unresolvable_broker_is_fatal(document_root, clock, monkeypatch):
    def no_such_host(*args, **kwargs):
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

    monkeypatch.setattr(socket, "getaddrinfo", no_such_host)
    app = make_app(document_root, clock, mqtt_host="broker.invalid")

    async def scenario():
        async with lifespan(app):
            pass

    with pytest.raises(StartupError):
        asyncio.run(scenario())
    assert not app.state.sweeper.is_running
