"""
hrm_keys.runner
---------------
Bounded worker pool for CPU-bound primitive calls.

Each call is tagged with an operation kind ("encryption", "decryption",
"derivation") whose configured timeout bounds how long the caller waits.
A call that overruns is reported as ``OperationTimeoutError``; the worker
thread itself cannot be interrupted and finishes in the background, its
result discarded.
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, Optional
import threading

from .config import EncryptionConfig
from .errors import OperationTimeoutError, ValidationError
from .logger import get_logger

log = get_logger("HRM.Keys.Runner")

ENCRYPTION = "encryption"
DECRYPTION = "decryption"
DERIVATION = "derivation"


class CryptoRunner:
    def __init__(self, config: Optional[EncryptionConfig] = None):
        self.config = config or EncryptionConfig()
        self._timeouts: Dict[str, float] = {
            ENCRYPTION: self.config.encryption_timeout,
            DECRYPTION: self.config.decryption_timeout,
            DERIVATION: self.config.key_derivation_timeout,
        }
        self._pool: Optional[ThreadPoolExecutor] = None
        self._pool_lock = threading.Lock()

    def _executor(self) -> ThreadPoolExecutor:
        with self._pool_lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(
                    max_workers=self.config.worker_pool_size,
                    thread_name_prefix="hrm-keys-crypto",
                )
            return self._pool

    def run(self, kind: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        if kind not in self._timeouts:
            raise ValidationError(f"unknown operation kind: {kind!r}")
        timeout = self._timeouts[kind]
        if not timeout:
            return fn(*args, **kwargs)

        future = self._executor().submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout as e:
            future.cancel()
            log.warning(f"[RUNNER] {kind} exceeded {timeout}s ({getattr(fn, '__name__', fn)})")
            raise OperationTimeoutError(f"{kind} did not complete within {timeout}s") from e

    def close(self) -> None:
        with self._pool_lock:
            if self._pool is not None:
                self._pool.shutdown(wait=False, cancel_futures=True)
                self._pool = None
