# zarrstream

Building blocks for streaming chunked Zarr arrays (v2 and v3) to the local
filesystem or to an S3-compatible object store: array geometry and
multiscale downsampling, a worker thread pool, byte sinks for files and S3
objects, and a creator that lays out one sink per chunk or shard.

## Modules

- `zarrstream.array_config`
  - `Dimension(name, type, array_size_px, chunk_size_px, shard_size_chunks=0)`:
    one axis of an array. An `array_size_px` of 0 marks the unbounded
    append dimension.
  - `DimensionType` (`SPACE`, `CHANNEL`, `TIME`, `OTHER`) and
    `ZarrVersion` (`V2`, `V3`).
  - `chunks_along_dimension(dim)` and `shards_along_dimension(dim)`: how
    many chunks or shards cover a dimension (shards is 0 when the dimension
    is unsharded).
  - `ArrayWriterConfig`: dimensions, data type, level of detail, optional
    bucket name, store path and optional compression parameters.
  - `downsample(config)`: returns `(next_config, can_continue)`. Every
    non-channel dimension is halved (rounding up), chunk and shard sizes are
    clamped to fit, and the level of detail goes up by one. `can_continue`
    is false as soon as the chunk size shrank along any dimension.
- `zarrstream.blosc`: `BloscCompressionParams` (`codec_id`, `clevel`,
  `shuffle`), `CompressionCodec`, and `blosc_codec_to_string`, which maps a
  codec to `"zstd"`, `"lz4"` or `"unrecognized codec"`.
- `zarrstream.thread_pool`: `ThreadPool(n_threads, error_handler)`. The
  thread count is clamped between 1 and the number of CPUs. Jobs are
  callables with no arguments; a job that returns `False` calls the error
  handler with an empty message, one that raises calls it with the
  exception's text. `push_job` returns `False` once the pool is stopping;
  `await_stop` finishes the queued jobs and joins the workers, and leaving a
  `with` block does the same.
- `zarrstream.sink`: the `Sink` interface (`write(offset, data)`, `flush()`),
  `FileSink`, which truncates its file on creation and writes at byte
  offsets, and `finalize_sink(sink)`, which flushes and closes a sink
  (`None` counts as already finalized).
- `zarrstream.s3_connection`: `S3Connection(endpoint, access_key_id,
  secret_access_key)` signs requests with AWS Signature Version 4
  (region `us-east-1`, path-style addressing) and offers
  `is_connection_valid`, `bucket_exists`, `object_exists`, `put_object`,
  `delete_object` and multipart uploads (`create_multipart_object`,
  `upload_multipart_object_part`, `complete_multipart_object` with a list
  of `Part`). `S3ConnectionPool` keeps only connections that validate,
  hands them out with `get_connection` / `return_connection`, and after
  `close()` returns `None` to waiters.
- `zarrstream.s3_sink`: `S3Sink(bucket_name, object_key, connection_pool)`
  buffers writes in a 5 MiB part buffer. Data that never fills the buffer
  is sent with a single put on `flush()`; otherwise each full buffer is
  uploaded as a multipart part and `flush()` completes the upload. Writing
  at an offset that has already been uploaded fails.
- `zarrstream.sink_creator`: `SinkCreator(thread_pool, connection_pool)`.
  - `SinkCreator.make_sink(path)` (static) creates a file sink, making its
    parent directory; a leading `file://` is stripped.
  - `make_s3_sink(bucket, key)` creates an S3 sink in an existing bucket.
  - `make_data_sinks(base_path, dimensions, parts_along_dimension)` creates
    the directory tree and one file sink per chunk or shard, skipping the
    first (append) dimension; the list is ordered with the last dimension
    varying fastest. `make_s3_data_sinks` builds the same keys in a bucket.
  - `make_metadata_sinks(version, base_path)` and
    `make_s3_metadata_sinks(version, bucket, base_path)` return sinks keyed
    by name: `.zattrs`, `.zgroup`, `acquire.json` for v2; `zarr.json`,
    `acquire.json` for v3.

  Directory and file creation runs on the thread pool when one is given,
  otherwise in the calling thread.

Failures are raised as `zarrstream.errors.StreamError`, a `RuntimeError`.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
from zarrstream.array_config import Dimension, DimensionType, chunks_along_dimension
from zarrstream.sink import finalize_sink
from zarrstream.sink_creator import SinkCreator
from zarrstream.thread_pool import ThreadPool

dims = [
    Dimension("z", DimensionType.SPACE, 0, 3, 1),
    Dimension("y", DimensionType.SPACE, 4, 2, 2),
    Dimension("x", DimensionType.SPACE, 12, 3, 2),
]

with ThreadPool(4, print) as pool:
    creator = SinkCreator(pool, None)
    sinks = creator.make_data_sinks("dataset/0", dims, chunks_along_dimension)
    # 8 files: dataset/0/<y in 0..1>/<x in 0..3>
    for sink in sinks:
        sink.write(0, b"\x00" * 18)
        finalize_sink(sink)
```

## What it does not do

The package supplies the pieces, not a complete stream. It has no writer
that splits incoming frames into chunk buffers, no Blosc compression
(`BloscCompressionParams` only describes the settings), no sharding index,
and no code that writes the contents of `.zarray`, `.zattrs`, `.zgroup`,
`zarr.json` or `acquire.json`; it only creates the sinks those files go to.
There is no command-line tool.