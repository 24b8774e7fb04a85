import logging
from contextlib import asynccontextmanager

from screener.core.config import settings
from screener.core.credentials import CredentialStore
from screener.storage.db import get_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app):
    app.state.store = get_store()
    app.state.credentials = CredentialStore()
    logger.info("screener_started db=%s", settings.database_path)
    yield
    app.state.credentials.clear()
    app.state.store.close()
    get_store.cache_clear()
