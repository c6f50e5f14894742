"""A sink that uploads its data to an object in an S3 bucket."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import StreamError, expect
from .s3_connection import Part, S3Connection, S3ConnectionPool
from .sink import Buffer, Sink

logger = logging.getLogger("zarrstream")

MAX_PART_SIZE = 5 << 20


@dataclass
class _MultipartUpload:
    upload_id: str = ""
    parts: List[Part] = field(default_factory=list)


class S3Sink(Sink):
    """Buffer writes in memory and upload them as one or more object parts.

    Data smaller than one part is sent with a single put on flush; larger
    data goes up as a multipart upload, one part per full buffer.
    """

    def __init__(
        self,
        bucket_name: str,
        object_key: str,
        connection_pool: S3ConnectionPool,
    ) -> None:
        expect(bucket_name, "Bucket name must not be empty")
        expect(object_key, "Object key must not be empty")
        expect(connection_pool is not None, "Null pointer: connection_pool")

        self._bucket_name = bucket_name
        self._object_key = object_key
        self._pool = connection_pool
        self._part_buffer = bytearray(MAX_PART_SIZE)
        self._nbytes_buffered = 0
        self._nbytes_flushed = 0
        self._multipart: Optional[_MultipartUpload] = None

    def write(self, offset: int, data: Buffer) -> bool:
        if data is None or len(data) == 0:
            return True

        if offset < self._nbytes_flushed:
            logger.error(
                "Cannot write data at offset %d, already flushed to %d",
                offset,
                self._nbytes_flushed,
            )
            return False
        self._nbytes_buffered = offset - self._nbytes_flushed
        expect(
            self._nbytes_buffered <= MAX_PART_SIZE,
            "Cannot write data at offset ",
            offset,
            ": beyond the current part",
        )

        view = memoryview(data).cast("B")
        while view:
            room = MAX_PART_SIZE - self._nbytes_buffered
            chunk = view[:room]
            if chunk:
                start = self._nbytes_buffered
                self._part_buffer[start : start + len(chunk)] = chunk
                self._nbytes_buffered += len(chunk)
                view = view[len(chunk) :]

            if self._nbytes_buffered == MAX_PART_SIZE and not self._flush_part():
                return False

        return True

    def flush(self) -> bool:
        if self._multipart is not None:
            if self._nbytes_buffered > 0 and not self._flush_part():
                logger.error(
                    "Failed to upload part %d of object %s",
                    len(self._multipart.parts) + 1,
                    self._object_key,
                )
                return False
            if not self._finalize_multipart_upload():
                logger.error(
                    "Failed to finalize multipart upload of object %s",
                    self._object_key,
                )
                return False
        elif self._nbytes_buffered > 0:
            if not self._put_object():
                logger.error("Failed to upload object: %s", self._object_key)
                return False

        self._nbytes_buffered = 0
        return True

    def _acquire(self) -> S3Connection:
        connection = self._pool.get_connection()
        if connection is None:
            raise StreamError("No S3 connection available")
        return connection

    def _buffered(self) -> bytes:
        return bytes(self._part_buffer[: self._nbytes_buffered])

    def _put_object(self) -> bool:
        if self._nbytes_buffered == 0:
            return False

        connection = self._acquire()
        try:
            etag = connection.put_object(
                self._bucket_name, self._object_key, self._buffered()
            )
            expect(etag, "Failed to upload object: ", self._object_key)
            self._nbytes_flushed = self._nbytes_buffered
            self._nbytes_buffered = 0
            return True
        except Exception as exc:
            logger.error("Error: %s", exc)
            return False
        finally:
            self._pool.return_connection(connection)

    def _create_multipart_upload(self) -> None:
        upload = _MultipartUpload()
        connection = self._acquire()
        try:
            upload.upload_id = connection.create_multipart_object(
                self._bucket_name, self._object_key
            )
        finally:
            self._pool.return_connection(connection)
        self._multipart = upload

    def _flush_part(self) -> bool:
        if self._nbytes_buffered == 0:
            return False

        if self._multipart is None:
            self._create_multipart_upload()
        upload = self._multipart

        connection = self._acquire()
        succeeded = False
        try:
            number = len(upload.parts) + 1
            etag = connection.upload_multipart_object_part(
                self._bucket_name,
                self._object_key,
                upload.upload_id,
                self._buffered(),
                number,
            )
            expect(
                etag,
                "Failed to upload part ",
                number,
                " of object ",
                self._object_key,
            )
            upload.parts.append(Part(number, etag, self._nbytes_buffered))
            succeeded = True
        except Exception as exc:
            logger.error("Error: %s", exc)
        finally:
            self._pool.return_connection(connection)
            self._nbytes_flushed += self._nbytes_buffered
            self._nbytes_buffered = 0

        return succeeded

    def _finalize_multipart_upload(self) -> bool:
        upload = self._multipart
        connection = self._acquire()
        try:
            return connection.complete_multipart_object(
                self._bucket_name, self._object_key, upload.upload_id, upload.parts
            )
        finally:
            self._pool.return_connection(connection)