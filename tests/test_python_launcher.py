"""End-to-end tests of generated Python launchers.

Each test embeds a small ``#!/bin/sh`` script as the "executable", runs the
generated launcher with the current interpreter and inspects what the child
observed, the launcher's exit status and the staging directory.
"""

import hashlib
import importlib.util
import os
import signal
import subprocess
import sys
import time

import pytest

from binary_flattener import templates
from binary_flattener.builder import Payload, render_launcher
from binary_flattener.target import resolve_language, resolve_target_config
from conftest import posix_only, run_python_launcher, sh_script


pytestmark = posix_only


@pytest.mark.parametrize("code", [0, 1, 7, 42, 255])
def test_exit_code_fidelity(make_python_launcher, launcher_env, stage_dir, code):
    launcher = make_python_launcher(sh_script(f"exit {code}"))
    proc = run_python_launcher(launcher, [], env=launcher_env)
    assert proc.returncode == code
    assert list(stage_dir.iterdir()) == []


def test_argument_fidelity(make_python_launcher, launcher_env):
    launcher = make_python_launcher(sh_script("for a in \"$@\"; do printf '%s\\0' \"$a\"; done"))
    args = ["a b", "--flag=1", "", "$HOME", "quote\"d", "*"]
    proc = run_python_launcher(launcher, args, env=launcher_env)
    assert proc.returncode == 0, proc.stderr
    assert proc.stdout.split(b"\0")[:-1] == [a.encode() for a in args]


def test_three_arguments_exactly(make_python_launcher, launcher_env):
    launcher = make_python_launcher(sh_script('echo "$#"'))
    proc = run_python_launcher(launcher, ["a b", "--flag=1", ""], env=launcher_env)
    assert proc.stdout == b"3\n"


def test_environment_and_stdin_are_forwarded(make_python_launcher, launcher_env):
    launcher = make_python_launcher(sh_script('printf "%s:" "$BF_PROBE"; cat'))
    launcher_env["BF_PROBE"] = "probe value"
    proc = run_python_launcher(launcher, [], env=launcher_env, stdin=b"from stdin\n")
    assert proc.returncode == 0, proc.stderr
    assert proc.stdout == b"probe value:from stdin\n"


def test_stderr_is_forwarded(make_python_launcher, launcher_env):
    launcher = make_python_launcher(sh_script("echo oops >&2; exit 3"))
    proc = run_python_launcher(launcher, [], env=launcher_env)
    assert proc.returncode == 3
    assert proc.stderr == b"oops\n"


def test_staged_file_is_private_executable_and_removed(make_python_launcher, launcher_env, stage_dir):
    script = sh_script(
        """
        test -x "$0" || exit 10
        dir=$(dirname "$0")
        case "$dir" in
            "$STAGE_ROOT"/binary_flattener_*) ;;
            *) exit 11 ;;
        esac
        ls -ld "$dir" | cut -c1-10
        """
    )
    launcher = make_python_launcher(script)
    launcher_env["STAGE_ROOT"] = str(stage_dir)
    proc = run_python_launcher(launcher, [], env=launcher_env)
    assert proc.returncode == 0, proc.stderr
    assert proc.stdout == b"drwx------\n"
    assert list(stage_dir.iterdir()) == []


def test_compressed_payload_runs(make_python_launcher, launcher_env, stage_dir):
    launcher = make_python_launcher(sh_script("echo compressed-ok; exit 5"), compress=True)
    assert "_COMPRESSED: bool = True" in launcher.read_text(encoding="utf-8")
    proc = run_python_launcher(launcher, [], env=launcher_env)
    assert proc.returncode == 5
    assert proc.stdout == b"compressed-ok\n"
    assert list(stage_dir.iterdir()) == []


def test_child_killed_by_signal(make_python_launcher, launcher_env, stage_dir):
    launcher = make_python_launcher(sh_script("kill -TERM $$"))
    proc = run_python_launcher(launcher, [], env=launcher_env)
    assert proc.returncode == -signal.SIGTERM
    assert list(stage_dir.iterdir()) == []


def test_sigterm_is_forwarded_to_child(make_python_launcher, launcher_env, stage_dir):
    script = sh_script(
        """
        trap 'echo got-term; exit 42' TERM
        echo ready
        while :; do sleep 0.05; done
        """
    )
    launcher = make_python_launcher(script)
    proc = subprocess.Popen(
        [sys.executable, str(launcher)],
        stdout=subprocess.PIPE,
        env=launcher_env,
    )
    try:
        assert proc.stdout.readline() == b"ready\n"
        time.sleep(0.5)
        proc.send_signal(signal.SIGTERM)
        assert proc.wait(timeout=30) == 42
        assert proc.stdout.read() == b"got-term\n"
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        proc.stdout.close()
    assert list(stage_dir.iterdir()) == []


def test_concurrent_launchers_do_not_collide(make_python_launcher, launcher_env, stage_dir):
    script = sh_script(
        """
        echo "$0"
        sleep 1
        test -f "$0" || exit 99
        exit "$1"
        """
    )
    launcher = make_python_launcher(script)
    procs = [
        subprocess.Popen(
            [sys.executable, str(launcher), str(code)],
            stdout=subprocess.PIPE,
            env=launcher_env,
        )
        for code in (3, 4)
    ]
    results = [p.communicate(timeout=60) for p in procs]
    assert [p.returncode for p in procs] == [3, 4]
    paths = [out.strip() for out, _ in results]
    assert paths[0] != paths[1]
    assert list(stage_dir.iterdir()) == []


def test_corrupt_alphabet_is_reported(make_python_launcher, launcher_env, stage_dir):
    launcher = make_python_launcher(sh_script("exit 0"))
    text = launcher.read_text(encoding="utf-8")
    launcher.write_text(text.replace('r"""\nIyEv', 'r"""\n!yEv', 1), encoding="utf-8")
    proc = run_python_launcher(launcher, [], env=launcher_env)
    assert proc.returncode == templates.EXIT_CORRUPT_PAYLOAD
    assert b"binary-flattener:" in proc.stderr
    assert list(stage_dir.iterdir()) == []


def test_checksum_mismatch_is_reported(make_python_launcher, launcher_env, stage_dir):
    launcher = make_python_launcher(sh_script("exit 0"))
    text = launcher.read_text(encoding="utf-8")
    launcher.write_text(text.replace('r"""\nIyEv', 'r"""\nJyEv', 1), encoding="utf-8")
    proc = run_python_launcher(launcher, [], env=launcher_env)
    assert proc.returncode == templates.EXIT_CORRUPT_PAYLOAD
    assert b"checksum mismatch" in proc.stderr


def test_staging_failure(make_python_launcher, launcher_env, tmp_path):
    not_a_dir = tmp_path / "file"
    not_a_dir.write_text("x", encoding="utf-8")
    launcher_env["BINARY_FLATTENER_TMPDIR"] = str(not_a_dir)
    launcher = make_python_launcher(sh_script("exit 0"))
    proc = run_python_launcher(launcher, [], env=launcher_env)
    assert proc.returncode == templates.EXIT_STAGING_FAILURE
    assert b"staging directory" in proc.stderr


def test_spawn_failure_still_cleans_up(make_python_launcher, launcher_env, stage_dir):
    launcher = make_python_launcher(b"\x00\x01\x02 definitely not an executable")
    proc = run_python_launcher(launcher, [], env=launcher_env)
    assert proc.returncode == templates.EXIT_SPAWN_FAILURE
    assert b"cannot execute" in proc.stderr
    assert list(stage_dir.iterdir()) == []


def test_debug_trace(make_python_launcher, launcher_env):
    launcher = make_python_launcher(sh_script("exit 0"))
    launcher_env["BINARY_FLATTENER_DEBUG"] = "yes"
    proc = run_python_launcher(launcher, [], env=launcher_env)
    assert proc.returncode == 0
    assert b"binary-flattener: staged" in proc.stderr
    assert b"binary-flattener: removed" in proc.stderr


def test_default_staging_uses_temp_dir(make_python_launcher, tmp_path):
    env = dict(os.environ)
    env.pop("BINARY_FLATTENER_TMPDIR", None)
    env["TMPDIR"] = str(tmp_path)
    launcher = make_python_launcher(sh_script('dirname "$(dirname "$0")"'))
    proc = run_python_launcher(launcher, [], env=env)
    assert proc.returncode == 0, proc.stderr
    assert os.path.realpath(proc.stdout.decode().strip()) == os.path.realpath(str(tmp_path))


def _write_launcher(tmp_path, payload: Payload):
    out = tmp_path / "handmade_launcher.py"
    code = render_launcher(
        payload=payload,
        language=resolve_language("python"),
        target=resolve_target_config(target="native"),
    )
    out.write_text(code, encoding="utf-8")
    return out


def test_decompression_failure_is_reported(tmp_path, launcher_env, stage_dir):
    executable = sh_script("exit 0")
    payload = Payload(
        data=b"not zlib",
        compressed=True,
        staged_size=len(executable),
        staged_sha256=hashlib.sha256(executable).hexdigest(),
    )
    launcher = _write_launcher(tmp_path, payload)
    proc = run_python_launcher(launcher, [], env=launcher_env)
    assert proc.returncode == templates.EXIT_DECOMPRESSION_FAILURE
    assert b"cannot decompress payload" in proc.stderr
    assert list(stage_dir.iterdir()) == []


def _limit_file_size():
    import resource

    signal.signal(signal.SIGXFSZ, signal.SIG_IGN)
    resource.setrlimit(resource.RLIMIT_FSIZE, (4096, 4096))


def test_partial_write_is_a_staging_failure(make_python_launcher, launcher_env, stage_dir):
    launcher = make_python_launcher(sh_script("exit 0") + b"#" * 200_000)
    proc = subprocess.run(
        [sys.executable, str(launcher)],
        capture_output=True,
        env=launcher_env,
        timeout=60,
        check=False,
        preexec_fn=_limit_file_size,
    )
    assert proc.returncode == templates.EXIT_STAGING_FAILURE, proc.stderr
    assert b"cannot write" in proc.stderr
    assert list(stage_dir.iterdir()) == []


def test_sigint_to_the_launcher_alone_reaches_child(make_python_launcher, launcher_env, stage_dir):
    script = sh_script(
        """
        trap 'echo got-int; exit 43' INT
        echo ready
        while :; do sleep 0.05; done
        """
    )
    launcher = make_python_launcher(script)
    # A new session has no controlling terminal, so only the launcher sees the signal.
    proc = subprocess.Popen(
        [sys.executable, str(launcher)],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        env=launcher_env,
        start_new_session=True,
    )
    try:
        assert proc.stdout.readline() == b"ready\n"
        time.sleep(0.5)
        os.kill(proc.pid, signal.SIGINT)
        assert proc.wait(timeout=30) == 43
        assert proc.stdout.read() == b"got-int\n"
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        proc.stdout.close()
    assert list(stage_dir.iterdir()) == []


class _FakeChild:
    pid = 4242

    def __init__(self):
        self.sent = []

    def send_signal(self, signum):
        self.sent.append(signum)


@pytest.fixture
def runtime(make_python_launcher):
    """The generated launcher imported as a module (``main`` is not run)."""

    launcher = make_python_launcher(sh_script("exit 0"))
    spec = importlib.util.spec_from_file_location("binary_flattener_runtime", launcher)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestSignalRelay:
    def test_signal_before_spawn_aborts_the_launch(self, runtime):
        previous = signal.getsignal(signal.SIGTERM)
        with runtime._SignalRelay() as relay:
            relay.checkpoint()
            os.kill(os.getpid(), signal.SIGTERM)
            with pytest.raises(runtime._Interrupted) as excinfo:
                relay.checkpoint()
        assert excinfo.value.signum == signal.SIGTERM
        assert signal.getsignal(signal.SIGTERM) == previous

    def test_pending_signal_is_forwarded_on_attach(self, runtime):
        child = _FakeChild()
        with runtime._SignalRelay() as relay:
            os.kill(os.getpid(), signal.SIGHUP)
            relay.attach(child)
            relay.checkpoint()
        assert child.sent == [signal.SIGHUP]

    @pytest.mark.parametrize("terminal_delivers, expected", [(False, [signal.SIGINT]), (True, [])])
    def test_keyboard_signal_forwarding_follows_terminal(self, runtime, monkeypatch, terminal_delivers, expected):
        monkeypatch.setattr(runtime, "_terminal_delivers_to_child", lambda: terminal_delivers)
        child = _FakeChild()
        with runtime._SignalRelay() as relay:
            relay.attach(child)
            os.kill(os.getpid(), signal.SIGINT)
        assert child.sent == expected

    def test_ignored_signal_stays_ignored(self, runtime):
        previous = signal.signal(signal.SIGHUP, signal.SIG_IGN)
        try:
            with runtime._SignalRelay():
                assert signal.getsignal(signal.SIGHUP) == signal.SIG_IGN
            assert signal.getsignal(signal.SIGHUP) == signal.SIG_IGN
        finally:
            signal.signal(signal.SIGHUP, previous)
