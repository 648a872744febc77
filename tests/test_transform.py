"""Tests for payload transforms."""

import pytest

from server_wrapper.core import transform
from server_wrapper.errors import TransformError, UnsafePathError
from server_wrapper.models.config import DirectTransform, parse_transform


class TestNormalizePath:
    """Tests for archive path normalization."""

    def test_plain_path(self) -> None:
        assert transform.normalize_path("mods/a.jar") == "mods/a.jar"

    def test_collapses_dots(self) -> None:
        assert transform.normalize_path("./mods/../a.jar") == "a.jar"

    def test_backslashes(self) -> None:
        assert transform.normalize_path("mods\\a.jar") == "mods/a.jar"

    @pytest.mark.parametrize("path", ["/etc/passwd", "C:/Windows/a.dll", "C:\\a.dll"])
    def test_absolute_rejected(self, path: str) -> None:
        with pytest.raises(UnsafePathError, match="Absolute path"):
            transform.normalize_path(path)

    @pytest.mark.parametrize("path", ["..", "../a.jar", "mods/../../a.jar", ".", ""])
    def test_escape_rejected(self, path: str) -> None:
        with pytest.raises(UnsafePathError, match="escapes"):
            transform.normalize_path(path)


class TestDirectTransform:
    """Tests for the direct transform."""

    def test_single_file(self) -> None:
        files = transform.apply(DirectTransform(), b"jar bytes", "fabric-api.jar")

        assert files == [("fabric-api.jar", b"jar bytes")]

    def test_unsafe_name(self) -> None:
        with pytest.raises(UnsafePathError):
            transform.apply(DirectTransform(), b"x", "../x.jar")


class TestUnzipTransform:
    """Tests for archive extraction."""

    def test_filters(self, make_zip) -> None:
        payload = make_zip({
            "a.jar": b"a",
            "a-dev.jar": b"dev",
            "readme.txt": b"docs",
            "libs/b.jar": b"b",
        })
        spec = parse_transform({"unzip": ["*.jar", "!*-dev.jar"]})

        files = transform.apply(spec, payload, "archive.zip")

        assert files == [("a.jar", b"a"), ("libs/b.jar", b"b")]

    def test_no_patterns_keep_all(self, make_zip) -> None:
        payload = make_zip({"a.jar": b"a", "data/pack.mcmeta": b"{}"})

        files = transform.apply(parse_transform({"unzip": []}), payload, "archive.zip")

        assert dict(files) == {"a.jar": b"a", "data/pack.mcmeta": b"{}"}

    def test_skips_directory_members(self, make_zip) -> None:
        payload = make_zip({"data/": b"", "data/a.json": b"{}"})

        files = transform.apply(parse_transform({"unzip": []}), payload, "archive.zip")

        assert files == [("data/a.json", b"{}")]

    def test_paths_normalized_before_filtering(self, make_zip) -> None:
        payload = make_zip({"./x/../a.jar": b"a"})

        files = transform.apply(parse_transform({"unzip": ["a.jar"]}), payload, "archive.zip")

        assert files == [("a.jar", b"a")]

    def test_unsafe_member(self, make_zip) -> None:
        payload = make_zip({"../evil.jar": b"evil", "ok.jar": b"ok"})

        with pytest.raises(UnsafePathError):
            transform.apply(parse_transform({"unzip": []}), payload, "archive.zip")

    def test_unsafe_member_even_if_filtered(self, make_zip) -> None:
        payload = make_zip({"../evil.txt": b"evil"})

        with pytest.raises(UnsafePathError):
            transform.apply(parse_transform({"unzip": ["*.jar"]}), payload, "archive.zip")

    def test_malformed_archive(self) -> None:
        with pytest.raises(TransformError, match="Malformed archive"):
            transform.apply(parse_transform({"unzip": []}), b"not a zip", "archive.zip")

    def test_encrypted_member(self, make_encrypted_zip) -> None:
        payload = make_encrypted_zip("mod.jar", b"jar")

        with pytest.raises(TransformError, match="Malformed archive"):
            transform.apply(parse_transform({"unzip": ["*.jar"]}), payload, "archive.zip")

    def test_empty_archive(self, make_zip) -> None:
        assert transform.apply(parse_transform({"unzip": []}), make_zip({}), "archive.zip") == []
