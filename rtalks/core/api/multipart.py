"""
Streaming multipart/form-data reader.

FastAPI's ``UploadFile`` spools the whole request before the handler runs.
This reader feeds ``request.stream()`` through python-multipart's parser
and hands out parts one at a time, so the upload validator sees file bytes
as they arrive and can abort a request mid-body.

Usage:
    reader = MultipartReader.from_request(request, file_field="image")
    async for part in reader:
        if isinstance(part, FormField):
            fields[part.name] = part.value
        else:
            await pipeline.receive(attempt, part)
"""

from __future__ import annotations

import codecs
from collections import deque
from dataclasses import dataclass
from typing import AsyncIterator

from python_multipart.multipart import MultipartParser, parse_options_header
from python_multipart.exceptions import MultipartParseError
from starlette.requests import Request

from rtalks.core.errors import UploadRejectedError, ValidationError
from rtalks.logging.setup import get_logger

logger = get_logger(__name__)

MAX_FIELD_BYTES = 64 * 1024
MAX_PARTS = 32

_HEADERS = "headers"
_DATA = "data"
_END = "end"


@dataclass
class FormField:
    """A text part, read completely."""
    name: str
    value: str


class FilePart:
    """A file part whose body is read on demand through ``chunks()``."""

    def __init__(self, reader: 'MultipartReader', name: str,
                 filename: str, content_type: str | None):
        self._reader = reader
        self.name = name
        self.filename = filename
        self.content_type = content_type
        self.exhausted = False

    async def chunks(self) -> AsyncIterator[bytes]:
        while not self.exhausted:
            kind, payload = await self._reader._next_event()
            if kind == _DATA:
                yield payload
            elif kind == _END:
                self.exhausted = True
            else:
                raise ValidationError("Malformed multipart body")

    async def drain(self) -> None:
        async for _ in self.chunks():
            pass


class MultipartReader:
    """Pull-based reader over a multipart byte stream."""

    def __init__(
        self,
        stream: AsyncIterator[bytes],
        boundary: bytes,
        file_field: str = "image",
        charset: str = "utf-8",
        max_field_bytes: int = MAX_FIELD_BYTES,
    ):
        self.file_field = file_field
        self.charset = self._check_charset(charset)
        self.max_field_bytes = max_field_bytes
        self._stream = stream.__aiter__()
        self._events: deque[tuple[str, object]] = deque()
        self._finished = False
        self._parts_seen = 0
        self._file_seen = False
        self._current_file: FilePart | None = None

        self._header_field = b""
        self._header_value = b""
        self._part_headers: dict[bytes, bytes] = {}

        callbacks = {
            "on_part_begin": self._on_part_begin,
            "on_part_data": self._on_part_data,
            "on_part_end": self._on_part_end,
            "on_header_field": self._on_header_field,
            "on_header_value": self._on_header_value,
            "on_header_end": self._on_header_end,
            "on_headers_finished": self._on_headers_finished,
        }
        self._parser = MultipartParser(boundary, callbacks)

    @classmethod
    def from_request(cls, request: Request, file_field: str = "image",
                     **kwargs) -> 'MultipartReader':
        """
        Build a reader for a request body.

        Raises:
            ValidationError: If the request is not multipart/form-data or
                names a charset Python cannot decode
        """
        content_type, params = parse_options_header(
            request.headers.get("content-type", ""))
        if content_type != b"multipart/form-data" or not params.get(b"boundary"):
            raise ValidationError("Expected a multipart/form-data request")
        charset = params.get(b"charset", b"utf-8").decode("latin-1")
        return cls(request.stream(), params[b"boundary"],
                   file_field=file_field, charset=charset, **kwargs)

    @staticmethod
    def _check_charset(charset: str) -> str:
        try:
            name = codecs.lookup(charset).name
            # Rejects bytes-to-bytes codecs such as rot13 or hex
            b"".decode(name)
        except (LookupError, ValueError):
            logger.info(f"Rejected multipart body with unknown charset {charset!r}")
            raise ValidationError("Malformed multipart body")
        return name

    def __aiter__(self) -> 'MultipartReader':
        return self

    async def __anext__(self) -> FormField | FilePart:
        part = await self.next_part()
        if part is None:
            raise StopAsyncIteration
        return part

    async def next_part(self) -> FormField | FilePart | None:
        """
        Return the next part, or None at the end of the body.

        An unread file part is drained first.

        Raises:
            ValidationError: Malformed body, second file, unexpected file
                field, oversized text field or too many parts
        """
        if self._current_file is not None and not self._current_file.exhausted:
            await self._current_file.drain()
        self._current_file = None

        event = await self._next_event(allow_eof=True)
        if event is None:
            return None
        kind, headers = event
        if kind != _HEADERS:
            raise ValidationError("Malformed multipart body")

        self._parts_seen += 1
        if self._parts_seen > MAX_PARTS:
            raise ValidationError("Too many form fields")

        name, filename, content_type = self._describe(headers)
        if filename is not None:
            if name != self.file_field:
                raise UploadRejectedError(f"Unexpected file field '{name}'")
            if self._file_seen:
                raise UploadRejectedError("Only one file may be uploaded")
            self._file_seen = True
            self._current_file = FilePart(self, name, filename, content_type)
            return self._current_file

        value = bytearray()
        while True:
            kind, payload = await self._next_event()
            if kind == _END:
                break
            if kind != _DATA:
                raise ValidationError("Malformed multipart body")
            value.extend(payload)
            if len(value) > self.max_field_bytes:
                raise ValidationError(f"Form field '{name}' is too large")
        return FormField(name, value.decode(self.charset, errors="replace"))

    def _describe(self, headers: dict[bytes, bytes]) -> tuple[str, str | None, str | None]:
        disposition, options = parse_options_header(
            headers.get(b"content-disposition", b""))
        if disposition != b"form-data" or b"name" not in options:
            raise ValidationError("Malformed multipart body")
        name = options[b"name"].decode(self.charset, errors="replace")
        filename = None
        if b"filename" in options:
            filename = options[b"filename"].decode(self.charset, errors="replace")
        content_type = headers.get(b"content-type")
        return (
            name,
            filename,
            content_type.decode("latin-1") if content_type else None,
        )

    async def _next_event(self, allow_eof: bool = False):
        while not self._events:
            if self._finished:
                if allow_eof:
                    return None
                raise ValidationError("Unexpected end of multipart body")
            await self._pump()
        return self._events.popleft()

    async def _pump(self) -> None:
        try:
            chunk = await self._stream.__anext__()
        except StopAsyncIteration:
            self._finished = True
            self._feed_end()
            return
        if chunk:
            try:
                self._parser.write(chunk)
            except MultipartParseError as e:
                logger.info(f"Rejected malformed multipart body: {e}")
                raise ValidationError("Malformed multipart body") from e

    def _feed_end(self) -> None:
        try:
            self._parser.finalize()
        except MultipartParseError as e:
            raise ValidationError("Malformed multipart body") from e

    # Parser callbacks. Slices are copied, the parser reuses its buffer.

    def _on_part_begin(self) -> None:
        self._part_headers = {}

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._events.append((_DATA, bytes(data[start:end])))

    def _on_part_end(self) -> None:
        self._events.append((_END, None))

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._part_headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        self._events.append((_HEADERS, self._part_headers))
