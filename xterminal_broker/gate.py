"""
Login gate.

Every request passes through LoginGate before static content is served.
Order of checks:

1. .js / .css assets are always served (the login page needs them).
2. /login.html is public for GET; a POST there is a login attempt, and good
   credentials get a session cookie and a redirect to "/".
3. Anything else needs a live session cookie, or it is redirected to the
   login page.
"""

from typing import Optional

from fastapi import Request, Response
from fastapi.responses import RedirectResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException

from xterminal_broker.auth import COOKIE_NAME, CredentialTable
from xterminal_broker.core.logger import get_logger
from xterminal_broker.schemas import LoginForm
from xterminal_broker.services.session_store import (
    SessionLimitExceeded,
    SessionStore,
    parse_token,
)

logger = get_logger(__name__)

# ── Paths ──
LOGIN_PATH: str = "/login.html"
HOME_PATH: str = "/"
PUBLIC_ASSET_SUFFIXES = (".js", ".css")


def is_public_asset(path: str) -> bool:
    return path.endswith(PUBLIC_ASSET_SUFFIXES)


class LoginGate:
    def __init__(
        self,
        session_store: SessionStore,
        credentials: CredentialTable,
        secure_cookie: bool = False,
    ):
        self.session_store = session_store
        self.credentials = credentials
        self.secure_cookie = secure_cookie

    async def __call__(self, request: Request, call_next):
        path = request.url.path

        if is_public_asset(path):
            return await call_next(request)

        if path == LOGIN_PATH:
            if request.method != "POST":
                return await call_next(request)
            response = await self.handle_login(request)
            if response is not None:
                return response

        token = parse_token(request.cookies.get(COOKIE_NAME))
        if self.session_store.lookup(token) is None:
            return RedirectResponse(url=LOGIN_PATH, status_code=302)

        return await call_next(request)

    async def handle_login(self, request: Request) -> Optional[Response]:
        """
        Process a login form submission.

        Returns:
            The response to send, or None to carry on with the session check
        """
        form = await self._read_form(request)
        if form is None:
            return None

        if not self.credentials.verify(form.username, form.password):
            logger.warning(f"Rejected login for {form.username!r}")
            return None

        try:
            session = self.session_store.create(form.username)
        except SessionLimitExceeded as e:
            logger.error(f"Cannot create session for {form.username!r}: {e}")
            return Response(status_code=503)

        logger.info(f"Login succeeded for {form.username!r}")
        response = RedirectResponse(url=HOME_PATH, status_code=302)
        response.set_cookie(
            key=COOKIE_NAME,
            value=session.token_hex,
            path="/",
            httponly=True,
            samesite="lax",
            secure=self.secure_cookie,
        )
        return response

    @staticmethod
    async def _read_form(request: Request) -> Optional[LoginForm]:
        try:
            data = await request.form()
        except HTTPException:
            logger.debug("Unparseable login form body")
            return None
        try:
            return LoginForm(username=data.get("username"), password=data.get("password"))
        except ValidationError:
            logger.debug("Login form missing fields or fields too long")
            return None
