"""Tests for content fingerprints."""

from topicspaces.hashing import hash_text


class TestHashText:
    def test_empty_string_is_seed(self):
        assert hash_text("") == "1505"  # 5381

    def test_single_character(self):
        # (5381 * 33) ^ ord("a")
        assert hash_text("a") == "2b5c4"

    def test_deterministic(self):
        text = "Same post text, hashed twice"
        assert hash_text(text) == hash_text(text)

    def test_detects_edits(self):
        assert hash_text("GPU kernels") != hash_text("GPU kernels!")

    def test_fits_in_32_bits(self):
        value = int(hash_text("x" * 10_000), 16)
        assert 0 <= value <= 0xFFFFFFFF

    def test_non_bmp_text(self):
        # Emoji are two UTF-16 code units; hashing must not fail on them
        assert hash_text("launch day 🚀") != hash_text("launch day")
