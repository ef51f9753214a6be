"""HTTP request parsing and response writing."""

from __future__ import annotations

import re
from typing import BinaryIO

HTTP_OK = 200
HTTP_CREATED = 201
HTTP_BAD_REQUEST = 400
HTTP_NOT_FOUND = 404
HTTP_METHOD_NOT_ALLOWED = 405
HTTP_CONFLICT = 409
HTTP_SERVICE_UNAVAILABLE = 503

HTTP_GET = "GET"
HTTP_POST = "POST"
HTTP_DELETE = "DELETE"

# header field names are compared in lower case
HTTP_HEADER_CONTENT_TYPE = "content-type"
HTTP_HEADER_CONTENT_LENGTH = "content-length"
HTTP_HEADER_LOCATION = "location"
HTTP_HEADER_ACCEPT = "accept"
HTTP_HEADER_USER_AGENT = "user-agent"
HTTP_HEADER_REFERER = "referer"
HTTP_HEADER_CONNECTION = "connection"
HTTP_HEADER_TRANSFER_ENCODING = "transfer-encoding"
HTTP_HEADER_CONTENT_DISPOSITION = "content-disposition"
HTTP_HEADER_REFRESH = "refresh"

MIME_TYPE_JPEG = "image/jpeg"
MIME_TYPE_PDF = "application/pdf"
MIME_TYPE_PNG = "image/png"

FORM_URLENCODED = "application/x-www-form-urlencoded"

_REASONS = {
    HTTP_OK: "OK",
    HTTP_CREATED: "Created",
    HTTP_BAD_REQUEST: "Bad Request",
    HTTP_NOT_FOUND: "Not Found",
    HTTP_METHOD_NOT_ALLOWED: "Method Not Allowed",
    HTTP_SERVICE_UNAVAILABLE: "Service Unavailable",
}

_EXTENSIONS = {
    MIME_TYPE_JPEG: ".jpg",
    MIME_TYPE_PDF: ".pdf",
    MIME_TYPE_PNG: ".png",
}

_WHITESPACE = re.compile(r"[ \t\n\r\f\v]")
_ENCODED = re.compile(r"%%|%(..)|%|\+", re.DOTALL)
_HEX_PREFIX = re.compile(r"[ \t\n\r\f\v]*([+-]?)(?:0[xX])?([0-9a-fA-F]*)")


def status_reason(status: int) -> str:
    """Return the reason phrase sent along with a status code."""
    return _REASONS.get(status, "Unknown Reason")


def file_extension(mime_type: str) -> str:
    """Return the file name extension for a MIME type, or an empty string."""
    return _EXTENSIONS.get(mime_type, "")


def to_relative_url(url: str) -> str:
    """Strip scheme and authority from an absolute URL."""
    pos = url.find("://")
    if pos < 0:
        return url
    slash = url.find("/", pos + 3)
    if slash < 0:
        raise ValueError(f"URL has no path: {url}")
    return url[slash:]


def _hex_value(s: str) -> int:
    match = _HEX_PREFIX.match(s)
    sign, digits = match.groups()
    value = int(digits, 16) if digits else 0
    return -value if sign == "-" else value


def url_decode(s: str) -> str:
    """Decode a form-urlencoded string."""

    def replace(match: re.Match) -> str:
        text = match.group(0)
        if text == "%%":
            return "%"
        if text == "+":
            return " "
        if match.group(1) is not None:
            return chr(_hex_value(match.group(1)) & 0xFF)
        return ""

    return _ENCODED.sub(replace, s)


def _normalize_key(key: str) -> str:
    return _WHITESPACE.sub("", key).lower()


def _normalize_value(value: str) -> str:
    return _WHITESPACE.sub("", value)


def _to_bytes(data: bytes | str) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


class _CountingStream:
    """Write-through wrapper that counts the bytes written."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self.count = 0

    def write(self, data: bytes | str) -> int:
        raw = _to_bytes(data)
        self._stream.write(raw)
        self.count += len(raw)
        return len(raw)

    def flush(self) -> None:
        self._stream.flush()

    def tell(self) -> int:
        return self.count


class ChunkedWriter:
    """Writes data in HTTP/1.1 chunked transfer encoding."""

    def __init__(self, stream) -> None:
        self._stream = stream
        self._buffer = bytearray()
        self._total = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes | str) -> int:
        if self._closed:
            raise ValueError("write to closed chunked stream")
        raw = _to_bytes(data)
        self._buffer += raw
        return len(raw)

    def flush(self) -> None:
        if self._buffer:
            size = len(self._buffer)
            self._total += size
            self._stream.write(f"{size:x}\r\n".encode("ascii"))
            self._stream.write(bytes(self._buffer))
            self._stream.write(b"\r\n")
            self._buffer.clear()
        self._stream.flush()

    def tell(self) -> int:
        return self._total + len(self._buffer)

    def close(self) -> None:
        if self._closed:
            return
        self.flush()
        self._stream.write(b"0\r\n\r\n")
        self._stream.flush()
        self._closed = True

    def __enter__(self) -> "ChunkedWriter":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Request:
    """An HTTP request read from a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream
        self.valid = True
        self.method = ""
        self.uri = ""
        self.protocol = ""
        self.log_info = ""
        self.headers: dict[str, str] = {}
        self._content: bytes | None = None
        self._form_data: dict[str, str] | None = None

        first = self._readline()
        if first is not None:
            parts = first.split()
            if len(parts) < 3:
                self.valid = False
            else:
                self.method, self.uri, self.protocol = parts[:3]

        while self.valid:
            line = self._readline()
            if line is None or line == "\r":
                break
            if not line or not line.endswith("\r"):
                self.valid = False
                break
            key, sep, value = line.partition(":")
            if not sep:
                self.valid = False
                break
            self.headers[_normalize_key(key)] = _normalize_value(value)

    def _readline(self) -> str | None:
        raw = self.stream.readline()
        if not raw:
            return None
        if raw.endswith(b"\n"):
            raw = raw[:-1]
        return raw.decode("latin-1")

    def header(self, key: str) -> str:
        return self.headers.get(_normalize_key(key), "")

    def content_length(self) -> int | None:
        """Value of the content-length header, or None when absent or malformed."""
        if HTTP_HEADER_CONTENT_LENGTH not in self.headers:
            return None
        try:
            return int(self.headers[HTTP_HEADER_CONTENT_LENGTH])
        except ValueError:
            return None

    def content(self) -> bytes:
        if self._content is None:
            length = self.content_length()
            if length is None or length < 0:
                return b""
            chunks = []
            remaining = length
            while remaining > 0:
                chunk = self.stream.read(remaining)
                if not chunk:
                    break
                chunks.append(chunk)
                remaining -= len(chunk)
            self._content = b"".join(chunks)
        return self._content

    def has_form_data(self) -> bool:
        length = self.content_length()
        return (
            self.header(HTTP_HEADER_CONTENT_TYPE) == FORM_URLENCODED
            and length is not None
            and length > 0
        )

    def form_data(self) -> dict[str, str]:
        if self._form_data is None:
            if not self.has_form_data():
                return {}
            entries = self.content().decode("latin-1").split("&")
            if entries and entries[-1] == "":
                entries.pop()
            data: dict[str, str] = {}
            for entry in entries:
                key, _, value = entry.partition("=")
                data[url_decode(key)] = url_decode(value)
            self._form_data = data
        return self._form_data

    def __str__(self) -> str:
        lines = [f"{self.method} {self.uri} {self.protocol}\n"]
        lines.extend(f"{key}: {value}\n" for key, value in self.headers.items())
        return "".join(lines)


class Response:
    """An HTTP response written to a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = _CountingStream(stream)
        self.status = HTTP_OK
        self.headers: dict[str, str] = {}
        self.sent = False
        self.content_begin = 0
        self._chunked: ChunkedWriter | None = None

    def set_header(self, key: str, value: str | int) -> "Response":
        nkey = _normalize_key(key)
        nvalue = _normalize_value(str(value))
        if nvalue:
            self.headers[nkey] = nvalue
        else:
            self.headers.pop(nkey, None)
        return self

    def header(self, key: str) -> str:
        return self.headers.get(_normalize_key(key), "")

    def send(self):
        """Send the headers and return a stream for the body."""
        self.set_header(HTTP_HEADER_CONTENT_LENGTH, "")
        return self._send_headers()

    def send_with_content(self, content: bytes | str) -> None:
        raw = _to_bytes(content)
        self.set_header(HTTP_HEADER_CONTENT_LENGTH, len(raw))
        out = self._send_headers()
        out.write(raw)
        out.flush()

    def content_size(self) -> int:
        """Number of bytes written after the headers."""
        return self._stream.tell() - self.content_begin

    def _send_headers(self):
        self.set_header(HTTP_HEADER_CONNECTION, "close")
        encoding = self.header(HTTP_HEADER_TRANSFER_ENCODING).lower()
        if encoding == "identity":
            self.set_header(HTTP_HEADER_TRANSFER_ENCODING, "")
        elif encoding == "chunked":
            self._chunked = ChunkedWriter(self._stream)
            self.set_header(HTTP_HEADER_CONTENT_LENGTH, "")
        elif encoding:
            raise ValueError(f"unknown transfer-encoding: {encoding}")

        lines = [f"HTTP/1.1 {self.status} {status_reason(self.status)}\r\n"]
        lines.extend(
            f"{key}: {value}\r\n" for key, value in self.headers.items() if value
        )
        lines.append("\r\n")
        self._stream.write("".join(lines).encode("latin-1"))
        self._stream.flush()
        self.sent = True
        self.content_begin = self._stream.tell()
        return self._chunked if self._chunked is not None else self._stream

    def __enter__(self) -> "Response":
        return self

    def __exit__(self, *exc_info) -> None:
        if self._chunked is not None:
            self._chunked.close()