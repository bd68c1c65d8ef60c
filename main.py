import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

import models  # noqa: F401  registers tables on Base.metadata
from core.config import Settings
from core.db import Base, make_engine, make_session_factory, ping
from core.errors import (
    ConflictError,
    EngineError,
    InsufficientStockError,
    NotFoundError,
    StorageFailure,
    ValidationError,
)
from core.logs import configure_logging
from routes.orders import router as orders_router
from routes.products import router as products_router
from routes.reviews import router as reviews_router

load_dotenv()

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    InsufficientStockError: 409,
    StorageFailure: 500,
}


async def engine_error_handler(request: Request, exc: EngineError):
    status_code = STATUS_BY_ERROR.get(type(exc), 500)
    if status_code == 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": ValidationError.kind, "detail": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.LOG_LEVEL)

    engine = make_engine(
        settings.DATABASE_URL,
        echo=settings.SQLALCHEMY_ECHO,
        busy_timeout=settings.SQLITE_BUSY_TIMEOUT,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Ensure tables exist (for dev/test)
        Base.metadata.create_all(bind=engine)
        try:
            dialect = ping(engine)
        except Exception:
            logger.exception("Database connection failed")
            raise
        logger.info("Connected to %s database", dialect)
        yield
        engine.dispose()
        logger.info("Database connections closed")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)

    app.add_exception_handler(EngineError, engine_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(products_router)
    app.include_router(reviews_router)
    app.include_router(orders_router)

    @app.get("/")
    async def health_check():
        """Health check endpoint"""
        return {"status": "OK"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    runtime = app.state.settings
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=runtime.PORT,
        reload=runtime.DEBUG,
    )
