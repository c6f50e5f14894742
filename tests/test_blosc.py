import pytest

from zarrstream.blosc import (
    BloscCompressionParams,
    CompressionCodec,
    blosc_codec_to_string,
)


@pytest.mark.parametrize(
    "codec, name",
    [
        (CompressionCodec.BLOSC_ZSTD, "zstd"),
        (CompressionCodec.BLOSC_LZ4, "lz4"),
        (CompressionCodec.NONE, "unrecognized codec"),
        ("gzip", "unrecognized codec"),
    ],
)
def test_codec_names(codec, name):
    assert blosc_codec_to_string(codec) == name


def test_default_params():
    params = BloscCompressionParams()
    assert params.codec_id == ""
    assert params.clevel == 1
    assert params.shuffle == 1


def test_params_keep_given_values():
    params = BloscCompressionParams(
        blosc_codec_to_string(CompressionCodec.BLOSC_LZ4), 5, 2
    )
    assert params.codec_id == "lz4"
    assert (params.clevel, params.shuffle) == (5, 2)


def test_params_equality():
    a = BloscCompressionParams("zstd", 1, 1)
    b = BloscCompressionParams(codec_id="zstd")
    assert a == b
    assert a != BloscCompressionParams("zstd", 3, 1)