import pytest

from zarrstream.errors import StreamError
from zarrstream.s3_sink import MAX_PART_SIZE, S3Sink
from zarrstream.sink import finalize_sink


class FakeConnection:
    def __init__(self, fail_put=False, fail_part=False):
        self.fail_put = fail_put
        self.fail_part = fail_part
        self.objects = {}
        self.parts = []
        self.completed = []
        self.created = 0

    def put_object(self, bucket_name, object_name, data):
        if self.fail_put:
            return ""
        self.objects[(bucket_name, object_name)] = bytes(data)
        return "etag"

    def create_multipart_object(self, bucket_name, object_name):
        self.created += 1
        return "upload"

    def upload_multipart_object_part(
        self, bucket_name, object_name, upload_id, data, part_number
    ):
        if self.fail_part:
            return ""
        self.parts.append((part_number, bytes(data)))
        return f"etag-{part_number}"

    def complete_multipart_object(self, bucket_name, object_name, upload_id, parts):
        self.completed.append(list(parts))
        return True


class FakePool:
    def __init__(self, connection):
        self.connection = connection
        self.checked_out = 0

    def get_connection(self):
        self.checked_out += 1
        return self.connection

    def return_connection(self, connection):
        assert connection is self.connection
        self.checked_out -= 1


def make_sink(**kwargs):
    connection = FakeConnection(**kwargs)
    pool = FakePool(connection)
    return S3Sink("bucket", "array/0/0", pool), connection, pool


def test_write_just_below_part_size_is_single_put():
    sink, connection, _ = make_sink()
    data = b"\x07" * (MAX_PART_SIZE - 1)
    assert sink.write(0, data)
    assert connection.created == 0
    assert sink.flush()
    assert connection.objects[("bucket", "array/0/0")] == data
    assert connection.parts == []


def test_write_of_exactly_part_size_uploads_one_part():
    sink, connection, _ = make_sink()
    data = b"\x09" * MAX_PART_SIZE
    assert sink.write(0, data)
    assert connection.created == 1
    assert [number for number, _ in connection.parts] == [1]
    assert len(connection.parts[0][1]) == 5 << 20
    assert sink.flush()
    assert [number for number, _ in connection.parts] == [1]
    assert connection.objects == {}


@pytest.mark.parametrize(
    "bucket, key, pool, message",
    [
        ("", "key", object(), "Bucket name must not be empty"),
        ("bucket", "", object(), "Object key must not be empty"),
        ("bucket", "key", None, "Null pointer: connection_pool"),
    ],
)
def test_constructor_validates(bucket, key, pool, message):
    with pytest.raises(StreamError, match=message):
        S3Sink(bucket, key, pool)


def test_small_write_is_put_on_flush():
    sink, connection, pool = make_sink()
    assert sink.write(0, b"ab")
    assert sink.write(2, b"cd")
    assert connection.objects == {}

    assert finalize_sink(sink)
    assert connection.objects[("bucket", "array/0/0")] == b"abcd"
    assert connection.parts == []
    assert pool.checked_out == 0


def test_empty_write_does_nothing():
    sink, connection, _ = make_sink()
    assert sink.write(0, b"")
    assert sink.flush()
    assert connection.objects == {}


def test_write_before_flushed_offset_fails():
    sink, connection, _ = make_sink()
    assert sink.write(0, b"abcd")
    assert sink.flush()
    assert sink.write(0, b"x") is False


def test_failed_put_fails_flush():
    sink, _, pool = make_sink(fail_put=True)
    assert sink.write(0, b"data")
    assert sink.flush() is False
    assert pool.checked_out == 0


def test_large_write_becomes_multipart():
    sink, connection, pool = make_sink()
    data = bytes(range(256)) * ((MAX_PART_SIZE + 4096) // 256)

    assert sink.write(0, data)
    assert connection.created == 1
    assert [number for number, _ in connection.parts] == [1]
    assert len(connection.parts[0][1]) == MAX_PART_SIZE

    assert sink.flush()
    assert [number for number, _ in connection.parts] == [1, 2]
    assert b"".join(chunk for _, chunk in connection.parts) == data
    assert connection.objects == {}

    completed = connection.completed[0]
    assert [part.number for part in completed] == [1, 2]
    assert [part.etag for part in completed] == ["etag-1", "etag-2"]
    assert sum(part.size for part in completed) == len(data)
    assert pool.checked_out == 0


def test_consecutive_writes_fill_parts_in_order():
    sink, connection, _ = make_sink()
    first = b"\x01" * (MAX_PART_SIZE - 10)
    second = b"\x02" * 20

    assert sink.write(0, first)
    assert sink.write(len(first), second)
    assert sink.flush()
    assert b"".join(chunk for _, chunk in connection.parts) == first + second


def test_failed_part_upload_fails_write():
    sink, connection, _ = make_sink(fail_part=True)
    assert sink.write(0, bytes(MAX_PART_SIZE)) is False
    assert connection.parts == []


def test_write_beyond_current_part_raises():
    sink, _, _ = make_sink()
    with pytest.raises(StreamError):
        sink.write(MAX_PART_SIZE + 1, b"x")