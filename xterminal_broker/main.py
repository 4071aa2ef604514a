import argparse
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, List, Optional

from fastapi import FastAPI
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from xterminal_broker.auth import MAX_CREDENTIALS, CredentialTable
from xterminal_broker.core.config import Settings, get_settings
from xterminal_broker.core.logger import get_logger, setup_logging
from xterminal_broker.gate import LOGIN_PATH, LoginGate
from xterminal_broker.services.broker_client import BrokerAddressError, BrokerClient
from xterminal_broker.services.session_store import SessionStore
from xterminal_broker.services.sweeper import SessionSweeper

logger = get_logger(__name__)


class StartupError(RuntimeError):
    """Configuration that makes it impossible to start serving."""


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings

    logger.info("=" * 60)
    logger.info("xterminal broker starting")
    logger.info(f"Document root: {settings.document_root}")
    logger.info(f"MQTT broker: {settings.mqtt_host}:{settings.mqtt_port}")
    logger.info(f"Accounts: {len(app.state.credentials)}")
    logger.info("=" * 60)

    try:
        await app.state.broker_client.resolve()
    except BrokerAddressError as e:
        raise StartupError(str(e)) from e
    app.state.broker_client.start()
    app.state.sweeper.start()

    yield

    logger.info("Shutting down...")
    await app.state.sweeper.stop()
    await app.state.broker_client.disconnect()


def create_app(
    settings: Optional[Settings] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    settings = settings or get_settings()

    document_root = Path(settings.document_root)
    if not document_root.is_dir():
        raise StartupError(f"Document root {document_root} is not a directory")

    try:
        credentials = CredentialTable.from_entries(settings.http_auth)
    except ValueError as e:
        raise StartupError(str(e)) from e

    app = FastAPI(
        title="xterminal broker",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    # ── Shared state, one instance per app ──
    session_store = SessionStore(
        ttl=settings.session_ttl,
        max_sessions=settings.max_sessions,
        clock=clock,
    )
    app.state.settings = settings
    app.state.credentials = credentials
    app.state.session_store = session_store
    app.state.sweeper = SessionSweeper(
        session_store,
        interval=settings.session_sweep_interval,
        ttl=settings.session_ttl,
    )
    app.state.broker_client = BrokerClient(settings.mqtt_host, settings.mqtt_port)

    # ── Login gate ──
    gate = LoginGate(session_store, credentials, secure_cookie=settings.use_ssl)
    app.middleware("http")(gate)

    # ── Main page (gated) ──
    index_path = document_root / settings.index_file

    @app.get("/")
    async def root():
        return FileResponse(str(index_path))

    # A failed login with a live session lands here: show the form again
    login_page = document_root / LOGIN_PATH.lstrip("/")

    @app.post(LOGIN_PATH)
    async def login_page_post():
        return FileResponse(str(login_page))

    # ── Everything else in the document root ──
    app.mount("/", StaticFiles(directory=str(document_root)), name="static")

    return app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Session-gated HTTPS front end for xterminal with an MQTT broker connection",
    )
    parser.add_argument("-d", dest="debug", action="store_true", default=None,
                        help="Debug logging")
    parser.add_argument("--mqtt-port", type=int,
                        help="MQTT broker port (default: 1883)")
    parser.add_argument("--http-port", type=int,
                        help="HTTPS listen port (default: 8443)")
    parser.add_argument("--document",
                        help="Document root (default: ./www)")
    parser.add_argument("--http-auth", action="append", metavar="USERNAME:PASSWORD",
                        help=f"Extra login, repeatable up to {MAX_CREDENTIALS - 1} times "
                             "(xterminal:xterminal is always accepted)")
    parser.add_argument("--ssl-cert",
                        help="TLS certificate (default: ./server.pem)")
    parser.add_argument("--ssl-key",
                        help="TLS private key (default: ./server.key)")
    parser.add_argument("--no-ssl", dest="use_ssl", action="store_false", default=None,
                        help="Serve plain HTTP")
    return parser


def load_settings(argv: Optional[List[str]] = None) -> Settings:
    """Environment settings with command line options applied on top."""
    args = build_parser().parse_args(argv)
    overrides = {
        "debug": args.debug,
        "mqtt_port": args.mqtt_port,
        "http_port": args.http_port,
        "document_root": args.document,
        "http_auth": args.http_auth,
        "ssl_cert": args.ssl_cert,
        "ssl_key": args.ssl_key,
        "use_ssl": args.use_ssl,
    }
    return Settings(**{k: v for k, v in overrides.items() if v is not None})


def run(argv: Optional[List[str]] = None):
    import uvicorn

    settings = load_settings(argv)
    setup_logging("DEBUG" if settings.debug else "INFO")

    app = create_app(settings)

    ssl_options = {}
    if settings.use_ssl:
        ssl_options = {"ssl_certfile": settings.ssl_cert, "ssl_keyfile": settings.ssl_key}

    uvicorn.run(
        app,
        host=settings.http_host,
        port=settings.http_port,
        log_level="debug" if settings.debug else "info",
        log_config=None,
        **ssl_options,
    )
