from typing import Any, Callable, Iterable, List, Optional, Tuple, Union
from functools import partial
from pathlib import Path
import threading
import httpx
from ..core.logging import get_logger
from ..core.models import UploadRequest, UploadResult
from ..storage.files import write_image_data
from ..storage.thumbnails import make_thumbnail
from .extractors import (
    Base64Source,
    ExtractionError,
    MultipartField,
    UploadItem,
    UrlSource,
    image_from_base64_data,
    image_from_multipart_field,
    image_from_url,
)

"""Batch ingestion: extract, persist and schedule a thumbnail for each item."""

logger = get_logger(__name__)

NO_SOURCE_REASON = "nor url or data are specified"
IO_ERROR_REASON = "I/O error"

Scheduler = Callable[..., Any]


def spawn_thumbnail(func: Callable[..., None], *args: Any) -> None:
    """Run `func(*args)` on a detached daemon thread."""
    threading.Thread(target=func, args=args, daemon=True).start()


def source_from_request(request: UploadRequest) -> Optional[UploadItem]:
    """Classify a JSON batch entry; inline data wins over a URL."""
    if request.data is not None:
        return Base64Source(request.data, request.filename, request.content_type)
    if request.url is not None:
        return UrlSource(request.url, request.filename, request.content_type)
    return None


def _declared(item: Union[UploadItem, UploadRequest]) -> Tuple[str, str]:
    """Best-effort filename/content type to report for a failed item."""
    if isinstance(item, MultipartField):
        return item.name, item.content_type or ""
    return item.filename or "", item.content_type or ""


def _failure(item: Union[UploadItem, UploadRequest], reason: str) -> UploadResult:
    filename, content_type = _declared(item)
    return UploadResult(
        filename=filename,
        content_type=content_type,
        size=0,
        success=False,
        reason=reason,
    )


def ingest_images(
    items: Iterable[Union[UploadItem, UploadRequest]],
    upload_root: Union[str, Path],
    schedule: Scheduler = spawn_thumbnail,
    client: Optional[httpx.Client] = None,
) -> List[UploadResult]:
    """Store every item of a batch and report one result per item, in order.

    Items are processed one after another. A failing item never stops the
    batch: it is reported with `success=False` and the cause in `reason`.
    For each stored file `schedule(make_thumbnail, path)` is called once;
    the thumbnail is not awaited.
    """
    extractors = {
        Base64Source: image_from_base64_data,
        UrlSource: partial(image_from_url, client=client),
        MultipartField: image_from_multipart_field,
    }
    root = Path(upload_root)
    results: List[UploadResult] = []

    for item in items:
        source = source_from_request(item) if isinstance(item, UploadRequest) else item
        if source is None:
            results.append(_failure(item, NO_SOURCE_REASON))
            continue

        try:
            image = extractors[type(source)](source)
        except ExtractionError as e:
            results.append(_failure(source, e.reason))
            continue

        filename = Path(image.filename).name
        target = root / filename
        try:
            size = write_image_data(image.payload, target)
        except (OSError, ValueError) as e:
            logger.warning("failed to store %s: %s", target, e)
            results.append(
                UploadResult(
                    filename=filename,
                    content_type=image.content_type,
                    size=0,
                    success=False,
                    reason=IO_ERROR_REASON,
                )
            )
            continue

        results.append(
            UploadResult(
                filename=filename,
                content_type=image.content_type,
                size=size,
                success=True,
                reason="ok",
            )
        )
        schedule(make_thumbnail, target)

    logger.debug("ingest_images => %s", [(r.filename, r.success, r.reason) for r in results])
    return results
