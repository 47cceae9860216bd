from dataclasses import dataclass
from typing import BinaryIO, Optional, Union
import base64
import httpx
from ..core.logging import get_logger
from ..storage.clients import http_client
from ..storage.files import normalize_image_filename

"""Turn each kind of upload item into a named image payload.

Extractors never touch the upload directory: they either return a
`NormalizedImage` or raise `ExtractionError` with a human-readable reason.
"""

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
READ_CHUNK_SIZE = 64 * 1024


class ExtractionError(ValueError):
    """An upload item that cannot be turned into image data."""

    @property
    def reason(self) -> str:
        return str(self)


@dataclass
class Base64Source:
    data: str
    filename: Optional[str] = None
    content_type: Optional[str] = None


@dataclass
class UrlSource:
    url: str
    filename: Optional[str] = None
    content_type: Optional[str] = None


@dataclass
class MultipartField:
    """One part of a multipart/form-data body.

    `file` is positioned at the start of the part's body and must be
    consumed before the part is closed.
    """
    name: str
    file: BinaryIO
    filename: Optional[str] = None
    content_type: Optional[str] = None

    def close(self) -> None:
        self.file.close()


UploadItem = Union[Base64Source, UrlSource, MultipartField]


@dataclass
class NormalizedImage:
    filename: str
    content_type: str
    payload: Union[bytes, BinaryIO]


def image_from_base64_data(item: Base64Source) -> NormalizedImage:
    if item.data is None:
        logger.debug("image_from_base64_data => Err('no image data')")
        raise ExtractionError("no image data")

    content_type = item.content_type or DEFAULT_CONTENT_TYPE
    filename = normalize_image_filename(item.filename or "", content_type)

    try:
        data = base64.b64decode(item.data, validate=True)
    except ValueError as e:
        logger.debug("image_from_base64_data => Err(%r)", str(e))
        raise ExtractionError(str(e)) from e

    logger.debug("image_from_base64_data => (%r, %r, %d bytes)", filename, content_type, len(data))
    return NormalizedImage(filename, content_type, data)


def _read_exact(response: httpx.Response, length: int) -> bytes:
    buf = bytearray()
    if response.is_stream_consumed:
        # body was already read by the transport
        buf.extend(response.content)
    else:
        for chunk in response.iter_raw(READ_CHUNK_SIZE):
            buf.extend(chunk)
            if len(buf) >= length:
                break
    if len(buf) < length:
        raise ExtractionError("failed to fill whole buffer")
    return bytes(buf[:length])


def image_from_url(item: UrlSource, client: Optional[httpx.Client] = None) -> NormalizedImage:
    """Download the image at `item.url`.

    The response must declare an `image/*` content type (the declared one is
    used when the header is missing) and a valid `Content-Length`; exactly
    that many bytes are read from the body.
    """
    if not item.url:
        logger.debug("image_from_url => Err('image URL not specified')")
        raise ExtractionError("image URL not specified")

    own_client = client is None
    if own_client:
        client = http_client()
    try:
        with client.stream("GET", item.url) as response:
            content_type = response.headers.get("content-type") or item.content_type or ""
            if not content_type.lower().startswith("image/"):
                raise ExtractionError("not an image")

            try:
                length = int(response.headers["content-length"])
            except (KeyError, ValueError):
                length = -1
            if length < 0:
                raise ExtractionError("invalid content length in response")

            if item.filename is not None:
                filename = normalize_image_filename(item.filename, content_type)
            else:
                filename = normalize_image_filename(item.url.split("/")[-1], content_type)

            data = _read_exact(response, length)
    except ExtractionError as e:
        logger.debug("image_from_url(%r) => Err(%r)", item.url, e.reason)
        raise
    except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as e:
        logger.debug("image_from_url(%r) => Err(%r)", item.url, str(e))
        raise ExtractionError(str(e)) from e
    finally:
        if own_client:
            client.close()

    logger.debug("image_from_url(%r) => (%r, %r)", item.url, filename, content_type)
    return NormalizedImage(filename, content_type, data)


def image_from_multipart_field(field: MultipartField) -> NormalizedImage:
    """Accept a form field declared as `image/*`, keeping its body as a stream."""
    content_type = field.content_type or ""
    if not content_type.startswith("image/"):
        logger.debug("image_from_multipart_field(%r) => Err('no image data')", field.name)
        raise ExtractionError("no image data")

    filename = normalize_image_filename(field.filename or field.name, content_type)
    logger.debug("image_from_multipart_field => (%r, %r, _)", filename, content_type)
    return NormalizedImage(filename, content_type, field.file)
