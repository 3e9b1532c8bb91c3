import asyncio
import contextlib
from typing import Optional

from fastapi import FastAPI
from loguru import logger

from fasbit.config import Config, get_config
from fasbit.db.session import build_engine, build_sessionmaker, create_tables
from fasbit.errors import register_exception_handlers
from fasbit.routers import register_routers
from fasbit.services.auth_service import AuthService
from fasbit.services.media_service import MediaService
from fasbit.services.session_store import Clock, UploadSessionStore, system_clock
from fasbit.services.upload_service import UploadService
from fasbit.utils.logging import configure_logging

TEMP_DIR_NAME = ".tmp"


def create_app(config: Optional[Config] = None, clock: Clock = system_clock) -> FastAPI:
    config = config or get_config()
    configure_logging(config.LOG_LEVEL)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        config.MEDIA_ROOT.mkdir(parents=True, exist_ok=True)

        engine = build_engine(config.DATABASE_URL)
        await create_tables(engine)

        store = UploadSessionStore(config.MEDIA_ROOT / TEMP_DIR_NAME, config.SESSION_TTL_MS, clock)
        auth = AuthService.from_config(config)

        app.state.config = config
        app.state.engine = engine
        app.state.sessionmaker = build_sessionmaker(engine)
        app.state.session_store = store
        app.state.auth_service = auth
        app.state.upload_service = UploadService.from_config(config, store)
        app.state.media_service = MediaService(config.MEDIA_ROOT, auth)

        sweeper = asyncio.create_task(store.run_sweeper(config.SWEEP_INTERVAL_MS))
        logger.info("fasbit media core ready, media root {}", config.MEDIA_ROOT)

        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

            await store.shutdown()
            await engine.dispose()

    app = FastAPI(title="fasbit media", lifespan=lifespan)
    register_exception_handlers(app)
    register_routers(app)
    return app
