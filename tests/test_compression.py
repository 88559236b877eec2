"""
Tests for the cached-value compression codec.
"""

import pytest

from bizdir.shared.caching import compression
from bizdir.shared.caching.compression import CompressionError


class TestCompression:
    """Test encode/decode behavior."""

    def test_round_trip_structure(self):
        data = {"businesses": [{"id": i, "name": f"Business {i}"} for i in range(50)], "total": 50}
        encoded = compression.compress(data)
        assert isinstance(encoded, str)
        assert compression.decompress(encoded) == data

    @pytest.mark.parametrize("data", [
        {1: "one", 2: "two"},
        [("id", 1), ("id", 2)],
        {"pair": (1, 2)},
    ])
    def test_values_json_would_alter_rejected(self, data):
        with pytest.raises(CompressionError):
            compression.compress(data)

    def test_mixed_key_dict_rejected(self):
        with pytest.raises(CompressionError):
            compression.compress({"pair": [1, 2], 3: "three"})

    def test_compressed_smaller_for_repetitive_data(self):
        data = {"rows": ["the same row again"] * 200}
        assert len(compression.compress(data)) < compression.serialized_size(data)

    def test_should_compress_threshold(self):
        assert compression.should_compress("x" * 2000, threshold=1024)
        assert not compression.should_compress("x" * 10, threshold=1024)

    def test_serialized_size_falls_back_for_unserializable(self):
        assert compression.serialized_size({1, 2, 3}) == len(str({1, 2, 3}))

    def test_unserializable_value_rejected(self):
        with pytest.raises(CompressionError):
            compression.compress(object())

    @pytest.mark.parametrize("payload", ["%%%", "aGVsbG8=", ""])
    def test_corrupt_payload_rejected(self, payload):
        with pytest.raises(CompressionError):
            compression.decompress(payload)
