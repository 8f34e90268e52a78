import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from filevault.core.config import Settings, get_settings
from filevault.core.errors import register_exception_handlers
from filevault.core.logger_config import setup_logging
from filevault.core.middleware import setup_middleware
from filevault.models import file as _file_models  # noqa: F401  registers File with Base
from filevault.models.database import Base, build_engine, build_session_factory
from filevault.routers import files
from filevault.storage.blobs import BlobStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # fail fast: a broken store or upload directory aborts start-up
    engine = app.state.engine
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    Base.metadata.create_all(bind=engine)
    app.state.blob_store.ensure_directory()
    logger.info("Serving uploads from %s", app.state.blob_store.directory)

    yield

    engine.dispose()
    logger.info("Database connections closed")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title="filevault", version="1.0.0", lifespan=lifespan)

    app.state.settings = settings
    app.state.engine = build_engine(settings.database_url)
    app.state.session_factory = build_session_factory(app.state.engine)
    app.state.blob_store = BlobStore(settings.upload_dir, settings.max_file_size)
    app.state.blob_store.ensure_directory()

    setup_middleware(app, settings)
    register_exception_handlers(app)

    @app.get("/health", tags=["Health"])
    def health():
        return {"status": "healthy"}

    # include our routers
    app.include_router(files.router)

    # uploaded blobs are public, by URL
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")

    return app


app = create_app()


def main():
    import uvicorn

    settings = get_settings()
    logger.info("Server running on port %s", settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
