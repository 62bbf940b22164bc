#!/usr/bin/env python3
"""Short-lived, single-use storage for finished analysis results.

A record lives under a random token until it is either downloaded once or
evicted by the background sweep after its time-to-live, whichever comes first.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import secrets
import threading
import time
from typing import Any, Callable

DEFAULT_TTL_SECONDS = 10 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60
TOKEN_BYTES = 32
MAX_TOKEN_ATTEMPTS = 5

LOGGER = logging.getLogger("clarity")


class TokenCollisionError(RuntimeError):
    """A token was inserted while another record still holds it."""


def new_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


@dataclasses.dataclass(slots=True)
class StoreConfig:
    ttl_seconds: float = DEFAULT_TTL_SECONDS
    sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS

    def __post_init__(self) -> None:
        if self.ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive: {self.ttl_seconds}")
        if self.sweep_interval_seconds <= 0:
            raise ValueError(f"sweep_interval_seconds must be positive: {self.sweep_interval_seconds}")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> StoreConfig:
        env = os.environ if environ is None else environ
        return cls(
            ttl_seconds=float(env.get("CLARITY_RESULT_TTL_SECONDS", DEFAULT_TTL_SECONDS)),
            sweep_interval_seconds=float(env.get("CLARITY_SWEEP_INTERVAL_SECONDS", DEFAULT_SWEEP_INTERVAL_SECONDS)),
        )


@dataclasses.dataclass(frozen=True, slots=True)
class StoredResult:
    token: str
    report: Any
    archive_bytes: bytes
    created_at: float


class ResultStore:
    """Token-keyed table with TTL eviction and destructive reads.

    Every presence check and removal happens under one lock, so a ``get`` and the
    sweep never both remove the same token. Payloads are stored by reference.
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ):
        self.config = config or StoreConfig()
        self.clock = clock
        self.logger = logger or LOGGER
        self._records: dict[str, StoredResult] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _expired(self, record: StoredResult, now: float) -> bool:
        return now - record.created_at >= self.config.ttl_seconds

    def put(self, token: str, report: Any, archive_bytes: bytes) -> StoredResult:
        record = StoredResult(token=token, report=report, archive_bytes=archive_bytes, created_at=self.clock())
        with self._lock:
            if token in self._records:
                raise TokenCollisionError("Token already present in result store")
            self._records[token] = record
        return record

    def put_new(self, report: Any, archive_bytes: bytes) -> str:
        """Store under a freshly minted token, regenerating on collision."""
        for _ in range(MAX_TOKEN_ATTEMPTS):
            token = new_token()
            try:
                self.put(token, report, archive_bytes)
                return token
            except TokenCollisionError:
                self.logger.warning("token_collision regenerating")
        raise TokenCollisionError(f"Could not mint a unique token after {MAX_TOKEN_ATTEMPTS} attempts")

    def get(self, token: str) -> StoredResult | None:
        """Remove and return the record, or None when missing, expired or already taken."""
        now = self.clock()
        with self._lock:
            record = self._records.pop(token, None)
        if record is None:
            return None
        if self._expired(record, now):
            self.logger.info("result_expired token_prefix=%s", token[:8])
            return None
        return record

    def sweep(self) -> int:
        now = self.clock()
        with self._lock:
            tokens = list(self._records)

        evicted = 0
        for token in tokens:
            with self._lock:
                record = self._records.get(token)
                if record is None or not self._expired(record, now):
                    continue
                del self._records[token]
            evicted += 1
            self.logger.info("result_evicted token_prefix=%s", token[:8])
        return evicted

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._records

    # ---------------------------- Background sweep -------------------------- #

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="clarity-result-sweeper", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.config.sweep_interval_seconds):
            try:
                self.sweep()
            except Exception:  # pylint: disable=broad-except
                self.logger.exception("result_sweep_failed")

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
