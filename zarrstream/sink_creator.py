"""Creation of the file and S3 sinks that make up a Zarr dataset."""

from __future__ import annotations

import logging
import os
import threading
from typing import Callable, Dict, List, Optional, Sequence

from .array_config import Dimension, ZarrVersion
from .errors import StreamError, expect
from .s3_connection import S3ConnectionPool
from .s3_sink import S3Sink
from .sink import FileSink, Sink, finalize_sink
from .thread_pool import ThreadPool

logger = logging.getLogger("zarrstream")

PartsAlongDimension = Callable[[Dimension], int]

_FILE_SCHEME = "file://"


def _strip_file_scheme(path: str) -> str:
    if path.startswith(_FILE_SCHEME):
        return path[len(_FILE_SCHEME) :]
    return path


def _metadata_keys(version: int) -> List[str]:
    if version == ZarrVersion.V2:
        return [".zattrs", ".zgroup", "acquire.json"]
    if version == ZarrVersion.V3:
        return ["zarr.json", "acquire.json"]
    raise StreamError(f"Invalid Zarr version {int(version)}")


class SinkCreator:
    """Build sinks for data and metadata, on the local disk or in S3.

    Directory and file creation is spread over ``thread_pool``; without a
    pool the work runs in the calling thread. ``connection_pool`` is needed
    only for S3 sinks and may be None.
    """

    def __init__(
        self,
        thread_pool: Optional[ThreadPool],
        connection_pool: Optional[S3ConnectionPool],
    ) -> None:
        self._thread_pool = thread_pool
        self._connection_pool = connection_pool

    # Single sinks

    @staticmethod
    def make_sink(file_path: str) -> Sink:
        """Create a file sink, making its parent directory if needed."""
        file_path = _strip_file_scheme(os.fspath(file_path))
        expect(file_path, "File path must not be empty.")

        parent = os.path.dirname(file_path)
        if not os.path.isdir(parent):
            try:
                os.makedirs(parent)
            except OSError as exc:
                logger.error("Failed to create directory '%s': %s", parent, exc)
                raise StreamError(
                    f"Failed to create directory '{parent}': {exc}"
                ) from exc

        return FileSink(file_path)

    def make_s3_sink(self, bucket_name: str, object_key: str) -> Sink:
        """Create a sink writing to ``object_key`` in an existing bucket."""
        expect(bucket_name, "Bucket name must not be empty.")
        expect(object_key, "Object key must not be empty.")
        expect(self._connection_pool is not None, "S3 connection pool not provided.")
        if not self._bucket_exists(bucket_name):
            raise StreamError(f"Bucket '{bucket_name}' does not exist.")

        return S3Sink(bucket_name, object_key, self._connection_pool)

    # Data sinks

    def make_data_sinks(
        self,
        base_path: str,
        dimensions: Sequence[Dimension],
        parts_along_dimension: PartsAlongDimension,
    ) -> List[Sink]:
        """Create one file sink per chunk or shard under ``base_path``.

        The sinks are ordered with the last dimension varying fastest.
        """
        base_path = _strip_file_scheme(os.fspath(base_path))
        expect(base_path, "Base path must not be empty.")

        try:
            paths = self._make_data_sink_paths(
                base_path, dimensions, parts_along_dimension, True
            )
        except StreamError as exc:
            logger.error("Failed to create dataset paths: %s", exc)
            raise StreamError(f"Failed to create dataset paths: {exc}") from exc

        return self._make_files(paths)

    def make_s3_data_sinks(
        self,
        bucket_name: str,
        base_path: str,
        dimensions: Sequence[Dimension],
        parts_along_dimension: PartsAlongDimension,
    ) -> List[Sink]:
        """Create one S3 sink per chunk or shard under ``base_path``."""
        expect(base_path, "Base path must not be empty.")

        keys = self._make_data_sink_paths(
            base_path, dimensions, parts_along_dimension, False
        )
        return self._make_s3_objects(bucket_name, keys)

    # Metadata sinks

    def make_metadata_sinks(self, version: int, base_path: str) -> Dict[str, Sink]:
        """Create the group-level metadata file sinks, keyed by file name."""
        base_path = _strip_file_scheme(os.fspath(base_path))
        expect(base_path, "Base path must not be empty.")

        names = self._make_metadata_sink_paths(version, base_path, True)
        return self._make_keyed_files(base_path, names)

    def make_s3_metadata_sinks(
        self, version: int, bucket_name: str, base_path: str
    ) -> Dict[str, Sink]:
        """Create the group-level metadata S3 sinks, keyed by file name."""
        expect(bucket_name, "Bucket name must not be empty.")
        expect(base_path, "Base path must not be empty.")
        if not self._bucket_exists(bucket_name):
            raise StreamError(f"Bucket '{bucket_name}' does not exist.")

        names = self._make_metadata_sink_paths(version, base_path, False)
        return self._make_keyed_s3_objects(bucket_name, base_path, names)

    # Paths

    def _make_data_sink_paths(
        self,
        base_path: str,
        dimensions: Sequence[Dimension],
        parts_along_dimension: PartsAlongDimension,
        create_directories: bool,
    ) -> List[str]:
        dims = list(dimensions)
        expect(dims, "Dimensions must not be empty.")
        paths = [base_path]

        if create_directories:
            expect(
                self._make_dirs(paths),
                "Failed to create directory '",
                base_path,
                "'.",
            )

        # the first (append) dimension and the last (x) dimension are skipped
        for dim in dims[1:-1]:
            n_parts = parts_along_dimension(dim)
            expect(n_parts, "Expression evaluated as false:\n\t", "n_parts")
            paths = [
                f"{path}/{k}" if path else str(k)
                for path in paths
                for k in range(n_parts)
            ]
            if create_directories:
                expect(
                    self._make_dirs(paths),
                    "Failed to create directories for dimension '",
                    dim.name,
                    "'.",
                )

        n_parts = parts_along_dimension(dims[-1])
        expect(n_parts, "Expression evaluated as false:\n\t", "n_parts")
        return [f"{path}/{k}" for path in paths for k in range(n_parts)]

    def _make_metadata_sink_paths(
        self, version: int, base_path: str, create_directories: bool
    ) -> List[str]:
        names = _metadata_keys(version)

        if create_directories:
            expect(
                self._make_dirs([base_path]),
                "Failed to create metadata directories.",
            )
            parents = {
                os.path.join(base_path, os.path.dirname(name))
                for name in names
                if os.path.dirname(name)
            }
            if parents:
                expect(
                    self._make_dirs(sorted(parents)),
                    "Failed to create metadata directories.",
                )

        return names

    # Parallel work

    def _run_all(self, tasks: List[Callable[[], None]]) -> List[str]:
        """Run every task, on the pool if there is one; return the errors.

        Once a task has failed, tasks that have not yet started are skipped.
        """
        errors: List[str] = []
        lock = threading.Lock()
        finished = threading.Semaphore(0)

        def wrap(task: Callable[[], None]) -> Callable[[], None]:
            def job() -> None:
                try:
                    with lock:
                        skip = bool(errors)
                    if not skip:
                        task()
                except Exception as exc:
                    with lock:
                        errors.append(str(exc))
                    raise
                finally:
                    finished.release()

            return job

        if self._thread_pool is None:
            for task in tasks:
                try:
                    wrap(task)()
                except Exception:
                    pass
            return errors

        pushed = 0
        push_failed = False
        for task in tasks:
            if not self._thread_pool.push_job(wrap(task)):
                push_failed = True
                break
            pushed += 1

        for _ in range(pushed):
            finished.acquire()

        expect(not push_failed, "Failed to push job to thread pool.")
        return errors

    def _make_dirs(self, dir_paths: Sequence[str]) -> bool:
        def make_dir(dirname: str) -> None:
            if not dirname:
                raise StreamError("Directory name must not be empty.")
            if os.path.isdir(dirname):
                return
            if os.path.exists(dirname):
                raise StreamError(f"'{dirname}' exists but is not a directory")
            try:
                os.makedirs(dirname, exist_ok=True)
            except OSError as exc:
                raise StreamError(
                    f"Failed to create directory '{dirname}': {exc}"
                ) from exc

        if not dir_paths:
            return True
        errors = self._run_all([lambda d=d: make_dir(d) for d in dir_paths])
        for error in errors:
            logger.error(error)
        return not errors

    def _open_files(self, file_paths: Sequence[str]) -> List[Sink]:
        sinks: List[Optional[Sink]] = [None] * len(file_paths)

        def open_file(index: int, filename: str) -> None:
            try:
                sinks[index] = FileSink(filename)
            except OSError as exc:
                raise StreamError(
                    f"Failed to create file '{filename}': {exc}"
                ) from exc

        errors = self._run_all(
            [lambda i=i, f=f: open_file(i, f) for i, f in enumerate(file_paths)]
        )
        if errors or any(sink is None for sink in sinks):
            for sink in sinks:
                finalize_sink(sink)
            raise StreamError("; ".join(errors) or "Failed to create files.")
        return [sink for sink in sinks if sink is not None]

    def _make_files(self, file_paths: Sequence[str]) -> List[Sink]:
        if not file_paths:
            return []
        return self._open_files(file_paths)

    def _make_keyed_files(
        self, base_dir: str, names: Sequence[str]
    ) -> Dict[str, Sink]:
        if not names:
            return {}
        prefix = f"{base_dir}/" if base_dir else ""
        sinks = self._open_files([prefix + name for name in names])
        return dict(zip(names, sinks))

    # S3

    def _bucket_exists(self, bucket_name: str) -> bool:
        expect(bucket_name, "Expression evaluated as false:\n\t", "!bucket_name.empty()")
        expect(self._connection_pool is not None, "S3 connection pool not provided.")

        connection = self._connection_pool.get_connection()
        if connection is None:
            raise StreamError("No S3 connection available")
        try:
            return connection.bucket_exists(bucket_name)
        finally:
            self._connection_pool.return_connection(connection)

    def _check_s3_target(self, bucket_name: str) -> None:
        if not bucket_name:
            logger.error("Bucket name not provided.")
            raise StreamError("Bucket name not provided.")
        if self._connection_pool is None:
            logger.error("S3 connection pool not provided.")
            raise StreamError("S3 connection pool not provided.")

    def _make_s3_objects(
        self, bucket_name: str, object_keys: Sequence[str]
    ) -> List[Sink]:
        if not object_keys:
            return []
        self._check_s3_target(bucket_name)
        return [
            S3Sink(bucket_name, key, self._connection_pool) for key in object_keys
        ]

    def _make_keyed_s3_objects(
        self, bucket_name: str, base_path: str, names: Sequence[str]
    ) -> Dict[str, Sink]:
        if not names:
            return {}
        self._check_s3_target(bucket_name)
        return {
            name: S3Sink(bucket_name, f"{base_path}/{name}", self._connection_pool)
            for name in names
        }