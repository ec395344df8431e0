import os
import pathlib
import subprocess
import sys

import pytest

from binary_flattener.builder import Payload, make_payload, render_launcher
from binary_flattener.target import resolve_language, resolve_target_config


posix_only = pytest.mark.skipif(os.name != "posix", reason="payload fixtures are /bin/sh scripts")


def sh_script(body: str) -> bytes:
    """Build a tiny executable payload: a ``#!/bin/sh`` script."""

    return ("#!/bin/sh\n" + body.strip() + "\n").encode("utf-8")


@pytest.fixture
def stage_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    d: pathlib.Path = tmp_path / "stage"
    d.mkdir()
    return d


@pytest.fixture
def launcher_env(stage_dir: pathlib.Path) -> dict[str, str]:
    env: dict[str, str] = dict(os.environ)
    env["BINARY_FLATTENER_TMPDIR"] = str(stage_dir)
    env.pop("BINARY_FLATTENER_DEBUG", None)
    return env


@pytest.fixture
def make_python_launcher(tmp_path: pathlib.Path):
    """Return a factory writing a Python launcher around an executable."""

    counter: list[int] = [0]

    def factory(executable: bytes, *, compress: bool = False) -> pathlib.Path:
        counter[0] += 1
        payload: Payload = make_payload(executable, compress=compress)
        code: str = render_launcher(
            payload=payload,
            language=resolve_language("python"),
            target=resolve_target_config(target="native"),
        )
        out: pathlib.Path = tmp_path / f"launcher_{counter[0]}.py"
        out.write_text(code, encoding="utf-8")
        return out

    return factory


def run_python_launcher(
    launcher: pathlib.Path,
    args: list[str],
    *,
    env: dict[str, str],
    stdin: bytes | None = None,
) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, str(launcher), *args],
        input=stdin,
        capture_output=True,
        env=env,
        timeout=60,
        check=False,
    )
