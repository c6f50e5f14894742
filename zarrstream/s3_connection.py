"""Connections to an S3-compatible object store, and a pool of them."""

from __future__ import annotations

import datetime
import hashlib
import hmac
import logging
import threading
import xml.etree.ElementTree as ElementTree
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Union
from urllib.parse import quote, urlsplit
from xml.sax.saxutils import escape

import requests

from .errors import expect

logger = logging.getLogger("zarrstream")

Buffer = Union[bytes, bytearray, memoryview]

_REGION = "us-east-1"
_SERVICE = "s3"
_TIMEOUT_S = 60


@dataclass
class Part:
    """One uploaded part of a multipart object."""

    number: int
    etag: str
    size: int = 0


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def _strip_etag(etag: Optional[str]) -> str:
    return (etag or "").strip('"')


def _find_text(xml_body: bytes, tag: str) -> str:
    try:
        root = ElementTree.fromstring(xml_body)
    except ElementTree.ParseError:
        return ""
    for element in root.iter():
        if element.tag == tag or element.tag.endswith("}" + tag):
            return (element.text or "").strip()
    return ""


class S3Connection:
    """A signed connection to one S3 endpoint, using path-style addressing."""

    def __init__(
        self, endpoint: str, access_key_id: str, secret_access_key: str
    ) -> None:
        if "://" not in endpoint:
            scheme = "https" if endpoint.startswith("https") else "http"
            endpoint = f"{scheme}://{endpoint}"
        parts = urlsplit(endpoint)
        expect(parts.netloc, "Invalid S3 endpoint: ", endpoint)

        self._scheme = parts.scheme
        self._host = parts.netloc
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._session = requests.Session()

    def _request(
        self,
        method: str,
        bucket: str = "",
        key: str = "",
        query: Optional[Mapping[str, str]] = None,
        body: bytes = b"",
    ) -> requests.Response:
        path = "/"
        if bucket:
            path += bucket
            if key:
                path += "/" + key
        query = dict(query or {})

        now = datetime.datetime.now(datetime.timezone.utc)
        amz_date = now.strftime("%Y%m%dT%H%M%SZ")
        date_stamp = now.strftime("%Y%m%d")
        payload_hash = _sha256_hex(body)

        canonical_uri = quote(path, safe="/~")
        canonical_query = "&".join(
            f"{quote(k, safe='~')}={quote(v, safe='~')}"
            for k, v in sorted(query.items())
        )
        headers = {
            "host": self._host,
            "x-amz-content-sha256": payload_hash,
            "x-amz-date": amz_date,
        }
        signed_headers = ";".join(sorted(headers))
        canonical_headers = "".join(f"{k}:{headers[k]}\n" for k in sorted(headers))
        canonical_request = "\n".join(
            [
                method,
                canonical_uri,
                canonical_query,
                canonical_headers,
                signed_headers,
                payload_hash,
            ]
        )
        scope = f"{date_stamp}/{_REGION}/{_SERVICE}/aws4_request"
        string_to_sign = "\n".join(
            [
                "AWS4-HMAC-SHA256",
                amz_date,
                scope,
                _sha256_hex(canonical_request.encode("utf-8")),
            ]
        )
        signing_key = _hmac(
            ("AWS4" + self._secret_access_key).encode("utf-8"), date_stamp
        )
        for component in (_REGION, _SERVICE, "aws4_request"):
            signing_key = _hmac(signing_key, component)
        signature = hmac.new(
            signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
        ).hexdigest()

        request_headers = {
            "x-amz-content-sha256": payload_hash,
            "x-amz-date": amz_date,
            "Authorization": (
                f"AWS4-HMAC-SHA256 Credential={self._access_key_id}/{scope}, "
                f"SignedHeaders={signed_headers}, Signature={signature}"
            ),
        }
        url = f"{self._scheme}://{self._host}{canonical_uri}"
        if canonical_query:
            url += "?" + canonical_query
        return self._session.request(
            method, url, headers=request_headers, data=body, timeout=_TIMEOUT_S
        )

    def _try_request(self, *args, **kwargs) -> Optional[requests.Response]:
        try:
            return self._request(*args, **kwargs)
        except requests.RequestException as exc:
            logger.error("S3 request failed: %s", exc)
            return None

    def is_connection_valid(self) -> bool:
        """Check the connection by listing the buckets at the endpoint."""
        response = self._try_request("GET")
        return response is not None and response.ok

    def bucket_exists(self, bucket_name: str) -> bool:
        """Return True if the bucket exists."""
        if not bucket_name:
            return False
        response = self._try_request("HEAD", bucket_name)
        return response is not None and response.ok

    def object_exists(self, bucket_name: str, object_name: str) -> bool:
        """Return True if the object exists."""
        if not bucket_name or not object_name:
            return False
        response = self._try_request("HEAD", bucket_name, object_name)
        return response is not None and response.ok

    def put_object(self, bucket_name: str, object_name: str, data: Buffer) -> str:
        """Upload ``data`` as one object; return its etag, or "" on failure."""
        expect(bucket_name, "Bucket name must not be empty.")
        expect(object_name, "Object name must not be empty.")
        expect(len(data) > 0, "Data must not be empty.")

        logger.debug("Putting object %s in bucket %s", object_name, bucket_name)
        response = self._try_request(
            "PUT", bucket_name, object_name, body=bytes(data)
        )
        if response is None or not response.ok:
            logger.error(
                "Failed to put object %s in bucket %s", object_name, bucket_name
            )
            return ""
        return _strip_etag(response.headers.get("ETag"))

    def delete_object(self, bucket_name: str, object_name: str) -> bool:
        """Delete an object; return True on success."""
        expect(bucket_name, "Bucket name must not be empty.")
        expect(object_name, "Object name must not be empty.")

        logger.debug("Deleting object %s from bucket %s", object_name, bucket_name)
        response = self._try_request("DELETE", bucket_name, object_name)
        if response is None or not response.ok:
            logger.error(
                "Failed to delete object %s from bucket %s", object_name, bucket_name
            )
            return False
        return True

    def create_multipart_object(self, bucket_name: str, object_name: str) -> str:
        """Start a multipart upload and return its upload id."""
        expect(bucket_name, "Bucket name must not be empty.")
        expect(object_name, "Object name must not be empty.")

        logger.debug(
            "Creating multipart object %s in bucket %s", object_name, bucket_name
        )
        response = self._try_request(
            "POST", bucket_name, object_name, query={"uploads": ""}
        )
        upload_id = ""
        if response is None or not response.ok:
            logger.error(
                "Failed to create multipart object %s in bucket %s",
                object_name,
                bucket_name,
            )
        else:
            upload_id = _find_text(response.content, "UploadId")
        expect(upload_id, "Upload id returned empty.")
        return upload_id

    def upload_multipart_object_part(
        self,
        bucket_name: str,
        object_name: str,
        upload_id: str,
        data: Buffer,
        part_number: int,
    ) -> str:
        """Upload one part; return its etag, or "" on failure."""
        expect(bucket_name, "Bucket name must not be empty.")
        expect(object_name, "Object name must not be empty.")
        expect(len(data) > 0, "Number of bytes must be positive.")
        expect(part_number, "Part number must be positive.")

        logger.debug(
            "Uploading multipart object part %d for object %s in bucket %s",
            part_number,
            object_name,
            bucket_name,
        )
        response = self._try_request(
            "PUT",
            bucket_name,
            object_name,
            query={"partNumber": str(part_number), "uploadId": upload_id},
            body=bytes(data),
        )
        if response is None or not response.ok:
            logger.error(
                "Failed to upload part %d for object %s in bucket %s",
                part_number,
                object_name,
                bucket_name,
            )
            return ""
        return _strip_etag(response.headers.get("ETag"))

    def complete_multipart_object(
        self,
        bucket_name: str,
        object_name: str,
        upload_id: str,
        parts: Iterable[Part],
    ) -> bool:
        """Assemble the uploaded parts into the final object."""
        parts = list(parts)
        expect(bucket_name, "Bucket name must not be empty.")
        expect(object_name, "Object name must not be empty.")
        expect(upload_id, "Upload id must not be empty.")
        expect(parts, "Parts list must not be empty.")

        logger.debug(
            "Completing multipart object %s in bucket %s", object_name, bucket_name
        )
        body = "<CompleteMultipartUpload>" + "".join(
            f"<Part><PartNumber>{part.number}</PartNumber>"
            f"<ETag>&quot;{escape(part.etag)}&quot;</ETag></Part>"
            for part in parts
        ) + "</CompleteMultipartUpload>"
        response = self._try_request(
            "POST",
            bucket_name,
            object_name,
            query={"uploadId": upload_id},
            body=body.encode("utf-8"),
        )
        failed = (
            response is None
            or not response.ok
            or _find_text(response.content, "Code") != ""
        )
        if failed:
            logger.error(
                "Failed to complete multipart object %s in bucket %s",
                object_name,
                bucket_name,
            )
            return False
        return True


class S3ConnectionPool:
    """A set of validated connections handed out one caller at a time."""

    def __init__(
        self,
        n_connections: int,
        endpoint: str,
        access_key_id: str,
        secret_access_key: str,
    ) -> None:
        self._connections: List[S3Connection] = []
        self._cv = threading.Condition()
        self._accepting = True

        for _ in range(n_connections):
            connection = S3Connection(endpoint, access_key_id, secret_access_key)
            if connection.is_connection_valid():
                self._connections.append(connection)

        expect(
            self._connections,
            "Expression evaluated as false:\n\t",
            "!connections_.empty()",
        )

    def get_connection(self) -> Optional[S3Connection]:
        """Wait for a free connection; None once the pool is closed."""
        with self._cv:
            self._cv.wait_for(lambda: not self._accepting or bool(self._connections))
            if not self._accepting or not self._connections:
                return None
            return self._connections.pop()

    def return_connection(self, connection: S3Connection) -> None:
        """Hand a connection back to the pool."""
        with self._cv:
            self._connections.append(connection)
            self._cv.notify()

    def close(self) -> None:
        """Stop handing out connections and wake every waiter."""
        with self._cv:
            self._accepting = False
            self._cv.notify_all()

    def __enter__(self) -> "S3ConnectionPool":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()