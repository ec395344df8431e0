"""Tests for the command line interface."""

import zlib

import pytest

from binary_flattener.cli import main


EXECUTABLE = b"\x7fELF" + bytes(range(256))


def test_embed_and_extract_round_trip(tmp_path):
    exe = tmp_path / "app"
    exe.write_bytes(EXECUTABLE)
    out = tmp_path / "launcher.py"

    assert main(["embed", str(exe), "-o", str(out), "--language", "PYTHON", "--compress", "-q"]) == 0
    assert out.is_file()

    recovered = tmp_path / "recovered"
    assert main(["extract", str(out), "-o", str(recovered), "-q"]) == 0
    assert recovered.read_bytes() == EXECUTABLE


def test_embed_defaults_to_rust_main_rs(tmp_path, monkeypatch):
    exe = tmp_path / "app"
    exe.write_bytes(EXECUTABLE)
    monkeypatch.chdir(tmp_path)

    assert main(["embed", str(exe), "-qq"]) == 0
    code = (tmp_path / "main.rs").read_text(encoding="utf-8")
    assert "static PAYLOAD: [u8;" in code
    assert "const COMPRESSED: bool = false;" in code


def test_embed_windows_target_uses_exe_suffix(tmp_path):
    exe = tmp_path / "app"
    exe.write_bytes(EXECUTABLE)
    out = tmp_path / "main.rs"
    assert main(["embed", str(exe), "-o", str(out), "--target", "x86_64-pc-windows-gnu", "-q"]) == 0
    assert '.exe";' in out.read_text(encoding="utf-8")


def test_embed_with_source(tmp_path):
    exe = tmp_path / "app"
    exe.write_bytes(EXECUTABLE)
    src = tmp_path / "main_src.rs"
    src.write_text("fn main() {}\n", encoding="utf-8")
    out = tmp_path / "main.rs"
    assert main(["embed", str(exe), "-o", str(out), "--source", str(src), "-q"]) == 0
    assert "// fn main() {}" in out.read_text(encoding="utf-8")


def test_unknown_language_is_a_usage_error(tmp_path, capsys):
    exe = tmp_path / "app"
    exe.write_bytes(EXECUTABLE)
    with pytest.raises(SystemExit) as excinfo:
        main(["embed", str(exe), "--language", "cobol"])
    assert excinfo.value.code == 2
    assert "Unsupported language" in capsys.readouterr().err


def test_bad_target_is_a_usage_error(tmp_path):
    exe = tmp_path / "app"
    exe.write_bytes(EXECUTABLE)
    with pytest.raises(SystemExit) as excinfo:
        main(["embed", str(exe), "--target", "nonsense"])
    assert excinfo.value.code == 2


def test_compress_flags_are_exclusive(tmp_path):
    exe = tmp_path / "app"
    exe.write_bytes(EXECUTABLE)
    with pytest.raises(SystemExit) as excinfo:
        main(["embed", str(exe), "--compress", "--compressed"])
    assert excinfo.value.code == 2


def test_precompressed_input(tmp_path):
    exe = tmp_path / "app.z"
    exe.write_bytes(zlib.compress(EXECUTABLE))
    out = tmp_path / "main.py"
    assert main(["embed", str(exe), "-o", str(out), "--language", "python", "--compressed", "-q"]) == 0
    recovered = tmp_path / "recovered"
    assert main(["extract", str(out), "-o", str(recovered), "-q"]) == 0
    assert recovered.read_bytes() == EXECUTABLE
