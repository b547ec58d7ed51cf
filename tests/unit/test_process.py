# tests/unit/test_process.py
import os
import signal

import pytest

from forwarder.core.errors import ForwarderError
from forwarder.utils import process

pytestmark = pytest.mark.unit


def test_pid_and_log_files_live_beside_config(tmp_path):
    cfg = tmp_path / "conf" / "config.yaml"
    assert process.pid_file_for(cfg) == (tmp_path / "conf" / "forwarder.pid").resolve()
    assert process.log_file_for(cfg).name == "forwarder.log"


def test_read_pid_file_tolerates_garbage(tmp_path):
    f = tmp_path / "forwarder.pid"
    assert process.read_pid_file(f) is None
    f.write_text("not-a-pid")
    assert process.read_pid_file(f) is None


def test_claim_refuses_when_another_live_process_owns_it(tmp_path, monkeypatch):
    f = tmp_path / "forwarder.pid"
    f.write_text("4321")
    monkeypatch.setattr(process, "is_process_running", lambda pid: True)
    with pytest.raises(ForwarderError):
        process.claim_pid_file(f, 1234)


def test_claim_replaces_stale_pid(tmp_path, monkeypatch):
    f = tmp_path / "forwarder.pid"
    f.write_text("4321")
    monkeypatch.setattr(process, "is_process_running", lambda pid: False)
    process.claim_pid_file(f, 1234)
    assert process.read_pid_file(f) == 1234


def test_claim_accepts_own_pid(tmp_path):
    f = tmp_path / "forwarder.pid"
    f.write_text(str(os.getpid()))
    process.claim_pid_file(f)
    assert process.read_pid_file(f) == os.getpid()


def test_start_background_spawns_detached_child(tmp_path, monkeypatch):
    seen = {}

    class _Proc:
        pid = 5555

    def fake_popen(argv, **kw):
        seen["argv"] = argv
        seen["kw"] = kw
        return _Proc()

    monkeypatch.setattr(process.subprocess, "Popen", fake_popen)
    monkeypatch.setattr(process, "is_process_running", lambda pid: False)
    pid_file, log_file = tmp_path / "forwarder.pid", tmp_path / "logs" / "forwarder.log"

    assert process.start_background(["forwarder", "run"], pid_file, log_file) == 5555
    assert seen["argv"] == ["forwarder", "run"]
    assert seen["kw"]["start_new_session"] is True
    assert process.read_pid_file(pid_file) == 5555
    assert log_file.exists()


def test_start_background_refuses_when_running(tmp_path, monkeypatch):
    pid_file = tmp_path / "forwarder.pid"
    pid_file.write_text("777")
    monkeypatch.setattr(process, "is_process_running", lambda pid: True)
    with pytest.raises(ForwarderError):
        process.start_background(["x"], pid_file, tmp_path / "forwarder.log")


def test_stop_sends_sigterm_and_removes_pid_file(tmp_path, monkeypatch):
    pid_file = tmp_path / "forwarder.pid"
    pid_file.write_text("888")
    alive = {"v": True}
    sent = []

    def fake_kill(pid, sig):
        sent.append((pid, sig))
        alive["v"] = False

    monkeypatch.setattr(process, "is_process_running", lambda pid: alive["v"])
    monkeypatch.setattr(process.os, "kill", fake_kill)

    assert process.stop_background(pid_file) is True
    assert sent == [(888, signal.SIGTERM)]
    assert not pid_file.exists()


def test_stop_without_pid_file(tmp_path):
    assert process.stop_background(tmp_path / "forwarder.pid") is False


def test_stop_cleans_stale_pid_file(tmp_path, monkeypatch):
    pid_file = tmp_path / "forwarder.pid"
    pid_file.write_text("999")
    monkeypatch.setattr(process, "is_process_running", lambda pid: False)
    assert process.stop_background(pid_file) is False
    assert not pid_file.exists()
