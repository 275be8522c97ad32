"""Shared fixtures for bbbmetrics tests."""

from __future__ import annotations

from pathlib import Path

import pytest

TESTDATA = Path(__file__).parent / "testdata"


def read_testdata(name: str, empty_state: bool = False) -> bytes:
    """Read a recorded API response from tests/testdata."""
    if empty_state:
        name = f"{name}.empty_state"
    return (TESTDATA / name).read_bytes()


@pytest.fixture
def meetings_xml() -> bytes:
    return read_testdata("getMeetings.xml")


@pytest.fixture
def recordings_xml() -> bytes:
    return read_testdata("getRecordings.xml")


@pytest.fixture
def health_xml() -> bytes:
    return read_testdata("healthcheck.xml")
