"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException

from imageproc.api.routes import router
from imageproc.batch import shutdown_batch_orchestrator
from imageproc.config import CORS_ORIGINS, TEMP_DIR, TEMP_URL_PREFIX, logger as config_logger
from imageproc.errors import ImageServiceError
from imageproc.storage import get_artifact_store

logging.getLogger("uvicorn").setLevel(logging.INFO)
logger = logging.getLogger("imageproc.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_artifact_store()
    store.start()
    config_logger.info("Image Processing API started (temp dir %s)", store.directory)
    yield
    config_logger.info("Image Processing API shutting down")
    await store.stop()
    removed = store.sweep()
    config_logger.info("Final cleanup removed %s expired temp files", removed)
    shutdown_batch_orchestrator()


app = FastAPI(
    title="Image Processing API",
    description="Convert, resize, analyse and enhance images; batch conversion and URL sources.",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api-docs",
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ImageServiceError)
async def image_service_error_handler(request: Request, exc: ImageServiceError):
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query"))
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error"})


app.include_router(router)
app.mount(TEMP_URL_PREFIX, StaticFiles(directory=TEMP_DIR), name="temp")


def run() -> None:
    import uvicorn
    from imageproc.config import HOST, PORT

    try:
        uvicorn.run("imageproc.main:app", host=HOST, port=PORT)
    except BaseException:
        # uvicorn reports startup failures with sys.exit
        logger.exception("Fatal error, removing temp artifacts before exit")
        get_artifact_store().purge()
        raise


if __name__ == "__main__":
    run()
