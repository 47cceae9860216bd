from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import TypeAdapter, ValidationError
from typing import List
from ..core.config import settings
from ..core.logging import get_logger
from ..core.models import UploadRequest, UploadResult
from ..ingest.batch import ingest_images
from ..ingest.multipart import MultipartError, parse_multipart
from ..storage.files import list_uploads

router = APIRouter(prefix="/images", tags=["images"])
logger = get_logger(__name__)

JSON_TYPE = "application/json"
MULTIPART_TYPE = "multipart/form-data"

_batch_adapter = TypeAdapter(List[UploadRequest])


@router.get(
    "",
    response_model=List[str],
    summary="List stored images",
    description=(
        "Returns the sorted names found in the upload directory.\n\n"
        "The `thumbnails` directory shows up once the first thumbnail is generated."
    ),
)
def list_images():
    try:
        return list_uploads(settings.upload_path)
    except OSError as e:
        logger.warning("I/O ERROR %r while reading directory %s", str(e), settings.upload_path)
        raise HTTPException(status_code=500, detail=f"list_failed {e}")


# Upload a batch of images. The body is either a JSON array of base64/URL
# items or a multipart form where every image/* field is an image.
@router.post(
    "",
    response_model=List[UploadResult],
    summary="Upload images",
    description=(
        "Accepts two body formats, chosen by `Content-Type`:\n\n"
        "- `application/json`: array of objects with optional `filename`, `content_type`, "
        "and either `data` (base64) or `url` (fetched by the service).\n"
        "- `multipart/form-data`: any number of fields; fields declared as `image/*` are stored, "
        "others are reported as failures.\n\n"
        "Returns one result per item, in request order. Thumbnails (100x100) are generated "
        "in the background into `thumbnails/`. Other content types get 406, a missing one 400."
    ),
)
async def upload_images(request: Request, background_tasks: BackgroundTasks):
    content_type = request.headers.get("content-type")
    if not content_type:
        raise HTTPException(status_code=400, detail="missing_content_type")

    media_type = content_type.split(";", 1)[0].strip().lower()

    if media_type == JSON_TYPE:
        body = await request.body()
        try:
            items = _batch_adapter.validate_json(body)
        except ValidationError as e:
            logger.info("malformed upload batch: %s", e.errors(include_url=False))
            raise HTTPException(status_code=400, detail="malformed_batch")
        return await run_in_threadpool(
            ingest_images, items, settings.upload_path, background_tasks.add_task
        )

    if media_type == MULTIPART_TYPE:
        try:
            fields = await parse_multipart(request.stream(), content_type)
        except MultipartError as e:
            logger.info("malformed multipart body: %s", e)
            raise HTTPException(status_code=400, detail=f"malformed_multipart {e}")
        try:
            return await run_in_threadpool(
                ingest_images, fields, settings.upload_path, background_tasks.add_task
            )
        finally:
            for field in fields:
                field.close()

    raise HTTPException(status_code=406, detail="unsupported_content_type")
