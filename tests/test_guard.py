from __future__ import annotations

import os

import pytest

from stackops.errors import ConcurrencyGuardSkip, ErrorKind
from stackops.execution.guard import RunGuard


def test_guard_is_exclusive_per_key(tmp_path) -> None:
    with RunGuard(tmp_path, "backup-myappdb"):
        with pytest.raises(ConcurrencyGuardSkip) as info:
            RunGuard(tmp_path, "backup-myappdb").acquire()

    assert info.value.kind is ErrorKind.SKIPPED
    assert info.value.holder == str(os.getpid())


def test_different_keys_do_not_block_each_other(tmp_path) -> None:
    with RunGuard(tmp_path, "backup-a"):
        with RunGuard(tmp_path, "backup-b"):
            pass


def test_guard_can_be_reacquired_after_release(tmp_path) -> None:
    guard = RunGuard(tmp_path, "backup-myappdb")
    guard.acquire()
    guard.release()

    with RunGuard(tmp_path, "backup-myappdb"):
        pass


def test_unsafe_key_characters_are_replaced(tmp_path) -> None:
    guard = RunGuard(tmp_path, "../etc/passwd")

    assert guard.path.parent == tmp_path
    assert guard.path.name == ".._etc_passwd.lock"
