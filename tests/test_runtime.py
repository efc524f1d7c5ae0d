# tests/test_runtime.py

import logging
import threading

import pytest

from hrm_keys.config import load_config
from hrm_keys.errors import OperationTimeoutError, RateLimitedError, ValidationError
from hrm_keys.logger import get_logger
from hrm_keys.ratelimit import SubjectRateLimiter
from hrm_keys.runner import DECRYPTION, DERIVATION, ENCRYPTION, CryptoRunner


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_limiter_fixed_window():
    clock = FakeClock()
    rl = SubjectRateLimiter(2, 60.0, clock=clock)

    assert rl.allow("Employee:1")
    assert rl.allow("Employee:1")
    assert not rl.allow("Employee:1")
    assert rl.remaining("Employee:1") == 0
    assert rl.allow("Employee:2")

    with pytest.raises(RateLimitedError):
        rl.check("Employee:1")

    clock.now += 61
    assert rl.remaining("Employee:1") == 2
    assert rl.allow("Employee:1")


def test_limiter_sweep():
    clock = FakeClock()
    rl = SubjectRateLimiter(5, 10.0, clock=clock)
    for i in range(3):
        rl.allow(i)
    assert len(rl) == 3

    clock.now += 5
    rl.allow("late")
    assert rl.sweep() == 0

    clock.now += 6
    assert rl.sweep() == 3
    assert len(rl) == 1


def test_limiter_sweeper_thread():
    rl = SubjectRateLimiter(1, 0.01)
    rl.allow("x")
    rl.start_sweeper(0.01)
    try:
        for _ in range(200):
            if len(rl) == 0:
                break
            threading.Event().wait(0.01)
        assert len(rl) == 0
    finally:
        rl.stop_sweeper()


def test_runner_returns_result_from_pool():
    runner = CryptoRunner(load_config({"iterations": 10_000}))
    try:
        assert runner.run(ENCRYPTION, lambda a, b: a + b, 2, 3) == 5
        assert runner.run(DECRYPTION, lambda: threading.current_thread().name).startswith("hrm-keys-crypto")
    finally:
        runner.close()


def test_runner_timeout():
    runner = CryptoRunner(load_config({"iterations": 10_000, "key_derivation_timeout": 0.05}))
    release = threading.Event()
    try:
        with pytest.raises(OperationTimeoutError):
            runner.run(DERIVATION, release.wait, 5)
    finally:
        release.set()
        runner.close()


def test_runner_zero_timeout_runs_inline():
    runner = CryptoRunner(load_config({"iterations": 10_000, "encryption_timeout": 0}))
    me = threading.current_thread().name
    assert runner.run(ENCRYPTION, lambda: threading.current_thread().name) == me
    runner.close()


def test_runner_unknown_kind():
    with pytest.raises(ValidationError):
        CryptoRunner().run("hashing", lambda: None)


def test_runner_propagates_errors():
    runner = CryptoRunner()

    def boom():
        raise ValidationError("bad input")

    try:
        with pytest.raises(ValidationError):
            runner.run(ENCRYPTION, boom)
    finally:
        runner.close()


def test_logger_redacts_secrets(caplog):
    log = get_logger("HRM.Keys.Test")
    caplog.set_level(logging.INFO)
    log.info("unlock attempt password=hunter2, master_key: c2VjcmV0 user=7")
    assert "hunter2" not in caplog.text
    assert "c2VjcmV0" not in caplog.text
    assert "password=***" in caplog.text
    assert "user=7" in caplog.text


def test_logger_redacts_percent_style_arguments(caplog, capsys):
    log = get_logger("HRM.Keys.Test")
    caplog.set_level(logging.INFO)
    log.warning("unlock password=%s for subject %s", "hunter2-secret", 7)
    assert "hunter2-secret" not in caplog.text
    assert "password=*** for subject 7" in caplog.text
    captured = capsys.readouterr()
    assert "hunter2-secret" not in captured.out
    assert "hunter2-secret" not in captured.err


def test_logger_is_configured_once():
    a = get_logger("HRM.Keys.Once")
    b = get_logger("HRM.Keys.Once")
    assert a is b
    assert len(a.handlers) == 1
