"""Unit tests for utility functions."""

from datetime import datetime

from pyaiplib.utils import (
    format_size,
    format_timestamp_ms,
    is_path_under_folder,
    normalize_vault_path,
    parse_iso_timestamp,
)


class TestNormalizeVaultPath:
    """Tests for normalize_vault_path function."""

    def test_plain_path_unchanged(self):
        """Test that a clean relative path is returned as is."""
        assert normalize_vault_path("notes/a.md") == "notes/a.md"

    def test_strips_dot_slash(self):
        """Test that leading ./ segments are removed."""
        assert normalize_vault_path("./notes/a.md") == "notes/a.md"
        assert normalize_vault_path("././a.md") == "a.md"

    def test_strips_outer_slashes(self):
        """Test that leading and trailing slashes are removed."""
        assert normalize_vault_path("/notes/") == "notes"
        assert normalize_vault_path("/") == ""

    def test_vault_root_is_empty(self):
        assert normalize_vault_path(".") == ""
        assert normalize_vault_path("./") == ""

    def test_backslashes_converted(self):
        """Test that Windows separators become forward slashes."""
        assert normalize_vault_path("notes\\sub\\a.md") == "notes/sub/a.md"


class TestIsPathUnderFolder:
    """Tests for is_path_under_folder function."""

    def test_direct_child(self):
        assert is_path_under_folder("notes/a.md", "notes")

    def test_nested_child(self):
        assert is_path_under_folder("notes/sub/a.md", "notes")

    def test_sibling_with_common_prefix(self):
        """Test that a folder name prefix is not treated as containment."""
        assert not is_path_under_folder("notes-old/a.md", "notes")

    def test_folder_itself_is_not_under(self):
        assert not is_path_under_folder("notes", "notes")

    def test_root_contains_everything(self):
        assert is_path_under_folder("a.md", "")
        assert is_path_under_folder("x/y/z.md", "")

    def test_trailing_slash_on_folder(self):
        assert is_path_under_folder("notes/a.md", "notes/")


class TestFormatSize:
    """Tests for format_size function."""

    def test_bytes(self):
        assert format_size(0) == "0 B"
        assert format_size(512) == "512 B"

    def test_kilobytes(self):
        assert format_size(1536) == "1.5 KB"

    def test_megabytes(self):
        assert format_size(5 * 1024 * 1024) == "5.0 MB"

    def test_gigabytes(self):
        assert format_size(2 * 1024 * 1024 * 1024) == "2.0 GB"


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_parse_plain_timestamp(self):
        """Test parsing the space-separated format returned by the API."""
        assert parse_iso_timestamp("2024-03-01 12:30:00") == datetime(
            2024, 3, 1, 12, 30, 0
        )

    def test_parse_zulu_timestamp(self):
        """Test that a Z suffix is accepted."""
        assert parse_iso_timestamp("2024-03-01T12:30:00Z") is not None

    def test_parse_invalid(self):
        assert parse_iso_timestamp("yesterday") is None
        assert parse_iso_timestamp(None) is None
        assert parse_iso_timestamp("") is None

    def test_format_unknown_ms(self):
        assert format_timestamp_ms(0) == "-"
        assert format_timestamp_ms(None) == "-"

    def test_format_ms(self):
        """Test formatting a millisecond timestamp in local time."""
        ms = int(datetime(2024, 3, 1, 8, 0, 0).timestamp() * 1000)
        assert format_timestamp_ms(ms) == "2024-03-01 08:00:00"
