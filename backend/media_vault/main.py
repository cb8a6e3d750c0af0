"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from media_vault.config import Settings, settings
from media_vault.database import create_engine, create_session_factory, ensure_schema
from media_vault.errors import IntegrityError, NotFound, VaultError
from media_vault.schemas.common import HealthResponse
from media_vault.services.album_catalog import AlbumCatalog
from media_vault.services.crypto import KeyMaterial
from media_vault.services.media_vault import MediaVault
from media_vault.services.object_store import ObjectStore
from media_vault.services.transcode import FfmpegTranscoder, Transcoder

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Content-Security-Policy": "default-src 'none'; sandbox",
    "Cross-Origin-Resource-Policy": "cross-origin",
    "Referrer-Policy": "no-referrer",
    "X-Frame-Options": "SAMEORIGIN",
}


def create_app(app_settings: Settings | None = None, transcoder: Transcoder | None = None) -> FastAPI:
    cfg = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Validate the key, prepare storage and the catalog, then serve."""
        logging.basicConfig(
            level=cfg.LOG_LEVEL.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        # Fails startup on a missing or malformed key.
        key = KeyMaterial.from_config(cfg.ENCRYPTION_KEY)

        store = ObjectStore(cfg.FILE_STORAGE_PATH, cfg.UPLOAD_TMP_DIR, cfg.MAX_FILE_SIZE_BYTES)
        engine = create_engine(cfg.DATABASE_URL)
        await ensure_schema(engine)

        app.state.engine = engine
        app.state.vault = MediaVault(
            key=key,
            store=store,
            catalog=AlbumCatalog(create_session_factory(engine)),
            transcoder=transcoder or FfmpegTranscoder(
                cfg.FFMPEG_BINARY, store.tmp_dir, cfg.TRANSCODE_TIMEOUT_SECONDS
            ),
            chunk_size=cfg.STREAM_CHUNK_SIZE,
            verify_before_stream=cfg.VERIFY_BEFORE_STREAM,
        )
        logger.info("Media vault ready (storage root %s)", store.root)

        yield

        await engine.dispose()

    app = FastAPI(
        title="Media Vault API",
        version="1.0.0",
        description="Encrypted media albums shared by permalink.",
        lifespan=lifespan,
    )

    # CORS. An empty list means any origin.
    origins = cfg.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=bool(origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        """Stored objects are served inline, so the browser must not sniff or run them."""
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    @app.exception_handler(VaultError)
    async def vault_error_handler(request: Request, exc: VaultError):
        if isinstance(exc, NotFound):
            # Unknown, missing on disk and outside the root all look the same.
            logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc)
            message = exc.public_message
        elif isinstance(exc, IntegrityError):
            logger.warning("Integrity failure on %s: %s", request.url.path, exc)
            message = exc.public_message
        elif exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
            message = exc.public_message
        else:
            message = str(exc)
        return JSONResponse(status_code=exc.status_code, content={"error": message})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check():
        """Verify API and catalog connectivity."""
        try:
            async with app.state.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
        except Exception as e:
            return {"status": "error", "database": str(e)}

    from media_vault.routes.albums import router as albums_router
    app.include_router(albums_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.API_PORT)
