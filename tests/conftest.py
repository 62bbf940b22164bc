"""Shared fixtures for building ZIP archives in memory."""

import datetime as dt
import io
import warnings
import zipfile

import pytest

from clarity_scripts.archive_cleanup_engine import PipelineConfig


NOW = dt.datetime(2026, 6, 1, 12, 0, 0, tzinfo=dt.timezone.utc)
RECENT = (2026, 5, 1, 9, 30, 0)
OLD = (2020, 1, 15, 8, 0, 0)


def build_zip(members, compression=zipfile.ZIP_DEFLATED):
    """Build a ZIP from (name, data, date_time) tuples; date_time None leaves the DOS epoch."""
    buf = io.BytesIO()
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        with zipfile.ZipFile(buf, "w", compression) as zf:
            for name, data, date_time in members:
                info = zipfile.ZipInfo(name) if date_time is None else zipfile.ZipInfo(name, date_time=date_time)
                info.compress_type = compression
                zf.writestr(info, data)
    return buf.getvalue()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def recent():
    return RECENT


@pytest.fixture
def old():
    return OLD


@pytest.fixture
def zip_builder():
    return build_zip


@pytest.fixture
def config():
    return PipelineConfig()


@pytest.fixture
def scenario_archive():
    """a.txt, an identical b.txt, and a 5 MiB screenshot-named image; all recent."""
    return build_zip(
        [
            ("a.txt", b"0123456789", RECENT),
            ("b.txt", b"0123456789", RECENT),
            ("IMG_0001.png", bytes(5 * 1024 * 1024), RECENT),
        ]
    )
