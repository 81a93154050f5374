"""FastAPI application entry point for the clinic sync sidecar."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI

from . import config
from .auth import load_auth_context, login, save_credentials
from .db import Database
from .errors import StoreError
from .inbox import Inbox
from .notifications import NotificationFeed
from .poller import PollingOptions
from .routes import router
from .store import MessageStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger(__name__)


def _login_from_env(db: Database, store: MessageStore) -> None:
    """Log in with STORE_EMAIL / STORE_PASSWORD when no token is stored."""
    if store.auth.is_authenticated or not (config.STORE_EMAIL and config.STORE_PASSWORD):
        return
    try:
        creds = login(
            store.base_url,
            config.STORE_EMAIL,
            config.STORE_PASSWORD,
            session=store.http,
            timeout=store.timeout,
        )
    except StoreError:
        log.exception("Startup login failed; log in via /auth/login")
        return
    save_credentials(db, creds)
    store.auth.set(creds["user_id"], creds["token"])
    log.info("Logged in as doctor %s", creds["user_id"])


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    db = Database()
    auth = load_auth_context(db)
    store = MessageStore(config.STORE_BASE_URL, auth, timeout=config.STORE_REQUEST_TIMEOUT)
    _login_from_env(db, store)

    def record_poll() -> None:
        db.record_poll(datetime.now(timezone.utc))

    inbox = Inbox(store, auth, options=PollingOptions(), on_synced=record_poll)
    feed = NotificationFeed(store, guard=lambda: auth.is_authenticated)

    app.state.db = db
    app.state.auth = auth
    app.state.store = store
    app.state.inbox = inbox
    app.state.feed = feed

    log.info("Store: %s", config.STORE_BASE_URL)
    log.info("Intensive poll interval: %dms", config.POLL_INTENSIVE_INTERVAL_MS)
    log.info("Normal poll interval: %dms", config.POLL_NORMAL_INTERVAL_MS)
    log.info("Idle timeout: %dms", config.POLL_IDLE_TIMEOUT_MS)
    log.info("Max retries: %d", config.POLL_MAX_RETRIES)

    feed.start()
    yield
    await inbox.close_all()
    await feed.stop()
    store.close()
    db.close()


app = FastAPI(
    title="Clinic Sync Sidecar",
    description="Keeps a doctor's conversations and notifications in sync with the clinic backend",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(router)


def main():
    uvicorn.run(
        "clinic_sync.main:app",
        host="0.0.0.0",
        port=config.SIDECAR_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    main()
