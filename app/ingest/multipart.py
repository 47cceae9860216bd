from typing import AsyncIterator, Callable, Dict, List, Optional
from tempfile import SpooledTemporaryFile
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header
from ..core.logging import get_logger
from .extractors import MultipartField

"""Streaming multipart/form-data reader.

Unlike HTML form handling, every part becomes a `MultipartField`, including
parts without a `filename`, so binary fields keep their own Content-Type.
Part bodies are spooled to temporary files (in memory until they grow large)
and handed over rewound, in body order.
"""

logger = get_logger(__name__)

SPOOL_MAX_SIZE = 1024 * 1024


class MultipartError(ValueError):
    """The request body is not valid multipart/form-data."""


def _decode(value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        return value.decode("latin-1")


class _FieldCollector:
    def __init__(self) -> None:
        self.fields: List[MultipartField] = []
        self._headers: Dict[bytes, bytes] = {}
        self._header_field = b""
        self._header_value = b""
        self._file: Optional[SpooledTemporaryFile] = None

    def callbacks(self) -> Dict[str, Callable]:
        return {
            "on_part_begin": self.on_part_begin,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
        }

    def on_part_begin(self) -> None:
        self._headers = {}
        self._file = SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE)

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def on_header_end(self) -> None:
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._file.write(data[start:end])

    def on_part_end(self) -> None:
        _, options = parse_options_header(self._headers.get(b"content-disposition", b""))
        filename = options.get(b"filename")
        content_type = None
        if b"content-type" in self._headers:
            ctype, _ = parse_options_header(self._headers[b"content-type"])
            content_type = _decode(ctype).lower()

        self._file.seek(0)
        field = MultipartField(
            name=_decode(options.get(b"name", b"")),
            file=self._file,
            filename=_decode(filename) if filename is not None else None,
            content_type=content_type,
        )
        self._file = None
        logger.debug("multipart field %r (%r, %r)", field.name, field.filename, field.content_type)
        self.fields.append(field)

    def abandon(self) -> None:
        """Release every spooled part, complete or not."""
        if self._file is not None:
            self._file.close()
            self._file = None
        for field in self.fields:
            field.close()
        self.fields = []


async def parse_multipart(stream: AsyncIterator[bytes], content_type: str) -> List[MultipartField]:
    """Read a multipart/form-data body into fields, in body order.

    The whole body is consumed and every part spooled before this returns,
    so fields are handed to ingestion only after the request body is read.
    Raises `MultipartError` when the boundary is missing or the body is
    malformed; no fields are returned in that case.
    """
    _, params = parse_options_header(content_type)
    boundary = params.get(b"boundary")
    if not boundary:
        raise MultipartError("missing boundary in multipart/form-data content type")

    collector = _FieldCollector()
    parser = MultipartParser(boundary, collector.callbacks())
    try:
        async for chunk in stream:
            if chunk:
                parser.write(chunk)
        parser.finalize()
    except MultipartParseError as e:
        collector.abandon()
        raise MultipartError(str(e)) from e

    if collector._file is not None:
        # body ended in the middle of a part
        collector.abandon()
        raise MultipartError("unexpected end of multipart body")

    return collector.fields
