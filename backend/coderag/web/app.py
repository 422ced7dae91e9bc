"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, APIRouter, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import load_config
from ..core.errors import (
    AlreadyQueuedError,
    CodeRagError,
    LLMError,
    NotFoundError,
    RequestTimeoutError,
    ValidationError,
)
from ..services import Services, build_services
from ..utils import setup_logging
from .routes import chat, embeddings, search

logger = logging.getLogger(__name__)

# Most specific first.
ERROR_STATUS = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (AlreadyQueuedError, 409),
    (LLMError, 502),
    (RequestTimeoutError, 504),
    (CodeRagError, 500),
)


def status_for(error: Exception) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


async def _handle_error(request: Request, exc: CodeRagError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def create_app(
    cfg: Optional[Dict] = None,
    services: Optional[Services] = None,
    start_pipeline: bool = True,
) -> FastAPI:
    if services is None:
        cfg = cfg or load_config()
        services = build_services(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_pipeline:
            services.pipeline.start()
        yield
        services.close()

    app = FastAPI(title="CodeRAG Backend", lifespan=lifespan)
    app.state.services = services

    # Setup CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CodeRagError, _handle_error)

    api_router = APIRouter(prefix="/api")

    api_router.include_router(search.router)
    api_router.include_router(embeddings.router)
    api_router.include_router(chat.router)

    @api_router.get("/health")
    def health():
        return {"status": "ok", "pipeline": services.pipeline.running}

    app.include_router(api_router)
    return app


def main() -> None:
    import uvicorn

    cfg = load_config()
    setup_logging(cfg)
    uvicorn.run(
        create_app(cfg),
        host=cfg["server"]["host"],
        port=int(cfg["server"]["port"]),
        log_config=None,
    )


if __name__ == "__main__":
    main()
