"""Array geometry, thread pool, and file and S3 sinks for streaming Zarr arrays."""

__version__ = "0.1.0"