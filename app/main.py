from contextlib import asynccontextmanager
from pathlib import Path
from fastapi import FastAPI, Request
from .core.config import settings
from .core.logging import configure_logging, get_logger
from .routers.images import router as images_router

configure_logging(settings.log_level)
logger = get_logger(__name__)

tags_metadata = [
    {
        "name": "images",
        "description": (
            "Endpoints to upload and list images.\n\n"
            "- Upload a JSON batch of base64 data or URLs, or a multipart form.\n"
            "- Files are written under an exclusive file lock.\n"
            "- A 100x100 thumbnail is generated in the background."
        ),
    }
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    Path(settings.upload_path).mkdir(parents=True, exist_ok=True)
    logger.info("storing uploads in %s", Path(settings.upload_path).resolve())
    yield


app = FastAPI(
    title="Image Upload Service",
    description=(
        "How to Use:\n\n"
        "1) Upload images: POST /images with either a JSON array "
        "(`[{\"filename\": \"a.png\", \"data\": \"<base64>\"}, {\"url\": \"https://...\"}]`) "
        "or a multipart/form-data body with image fields.\n"
        "2) List stored files: GET /images.\n\n"
        "Notes: every item gets its own result (`success`, `size`, `reason`); a failing item "
        "does not fail the batch. Thumbnails land in `thumbnails/` under the upload directory."
    ),
    openapi_tags=tags_metadata,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, type(e).__name__, e)
        raise
    client = request.client.host if request.client else "-"
    logger.info(
        "%s \"%s%s\" %s %s",
        request.method,
        request.headers.get("host", ""),
        request.url.path,
        client,
        response.status_code,
    )
    return response


app.include_router(images_router)
