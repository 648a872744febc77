"""Shared fixtures."""

import io
import zipfile
from typing import Callable

import pytest


def build_zip(members: dict[str, bytes]) -> bytes:
    """Build an in-memory zip archive from name -> bytes."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in members.items():
            archive.writestr(name, data)
    return buffer.getvalue()


def build_encrypted_zip(name: str, data: bytes) -> bytes:
    """Build a single-member archive whose member is flagged as encrypted.

    zipfile cannot write encrypted members, so the flag bit is set in the
    local and central headers after the fact.
    """
    archive = bytearray(build_zip({name: data}))
    local = archive.index(b"PK\x03\x04")
    archive[local + 6] |= 0x01
    central = archive.index(b"PK\x01\x02")
    archive[central + 8] |= 0x01
    return bytes(archive)


@pytest.fixture
def make_zip() -> Callable[[dict[str, bytes]], bytes]:
    return build_zip


@pytest.fixture
def make_encrypted_zip() -> Callable[[str, bytes], bytes]:
    return build_encrypted_zip
