"""Launcher templates.

Each supported output language owns exactly one :class:`LauncherTemplate`.
A template is complete launcher source with ``__BF_<NAME>__`` placeholders;
the builder fills them in a single pass. The runtime logic inside every
template follows the same sequence: decode the embedded literal, inflate it
when flagged, stage it as a private executable, run it with this process's
arguments/environment/standard streams, remove the staged copy, and exit with
the child's status.
"""

from dataclasses import dataclass
import re
import textwrap


EXIT_LAUNCHER_FAILURE: int = 120
EXIT_CORRUPT_PAYLOAD: int = 121
EXIT_DECOMPRESSION_FAILURE: int = 122
EXIT_STAGING_FAILURE: int = 123
EXIT_SPAWN_FAILURE: int = 124

STAGING_DIR_ENV: str = "BINARY_FLATTENER_TMPDIR"
DEBUG_ENV: str = "BINARY_FLATTENER_DEBUG"

_CONTROL_RE: re.Pattern[str] = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


@dataclass(frozen=True, slots=True)
class LauncherTemplate:
    """Launcher source template for one output language.

    :ivar language: Human readable language name.
    :ivar text: Template text with ``__BF_<NAME>__`` placeholders.
    :ivar true_literal: Spelling of ``True`` in the language.
    :ivar false_literal: Spelling of ``False`` in the language.
    :ivar comment_prefix: Line comment prefix in the language.
    :ivar payload_pattern: Regex locating the embedded literal (group ``literal``).
    :ivar compressed_pattern: Regex locating the compression flag (group ``flag``).
    """

    language: str
    text: str
    true_literal: str
    false_literal: str
    comment_prefix: str
    payload_pattern: re.Pattern[str]
    compressed_pattern: re.Pattern[str]

    def bool_literal(self, value: bool) -> str:
        """Spell ``value`` as a boolean literal of the language."""

        return self.true_literal if value is True else self.false_literal

    def comment_block(self, text: str) -> str:
        """Render ``text`` as a block of line comments.

        Control characters other than tab are written as ``\\xNN`` escapes so
        the comment can neither end early nor carry bytes the compiler rejects.

        :param text: Arbitrary text.
        :returns: Commented lines, each terminated by a newline.
        """

        lines: list[str] = []
        for line in text.rstrip().splitlines():
            line = _CONTROL_RE.sub(lambda m: f"\\x{ord(m.group(0)):02x}", line)
            if line.strip() == "":
                lines.append(self.comment_prefix)
            else:
                lines.append(f"{self.comment_prefix} {line}")
        return "".join(f"{line}\n" for line in lines)


_PYTHON_TEXT: str = textwrap.dedent(
    r'''
    #!/usr/bin/env python3
    # This file was generated by binary-flattener. It embeds a compiled executable.
    #
    # At startup it decodes the payload below, stages it as a private temporary
    # executable, runs it with this process's arguments, environment and standard
    # streams, removes the staged copy and exits with the child's exit status.
    #
    # Set __BF_STAGING_DIR_ENV__ to choose the staging directory and
    # __BF_DEBUG_ENV__=1 to trace the launcher on stderr.

    import base64
    import binascii
    import contextlib
    import hashlib
    import os
    import signal
    import stat
    import subprocess
    import sys
    import tempfile
    import zlib
    from collections.abc import Callable, Iterator


    _COMPRESSED: bool = __BF_COMPRESSED__
    _STAGED_NAME: str = "__BF_STAGED_NAME__"
    _STAGED_SIZE: int = __BF_STAGED_SIZE__
    _STAGED_SHA256: str = "__BF_STAGED_SHA256__"

    _EXIT_LAUNCHER_FAILURE: int = __BF_EXIT_LAUNCHER_FAILURE__
    _EXIT_CORRUPT_PAYLOAD: int = __BF_EXIT_CORRUPT_PAYLOAD__
    _EXIT_DECOMPRESSION_FAILURE: int = __BF_EXIT_DECOMPRESSION_FAILURE__
    _EXIT_STAGING_FAILURE: int = __BF_EXIT_STAGING_FAILURE__
    _EXIT_SPAWN_FAILURE: int = __BF_EXIT_SPAWN_FAILURE__

    _PAYLOAD: str = r"""
    __BF_PAYLOAD__
    """


    class _LauncherError(Exception):
        """Fatal launcher-level failure; no child exit status is available."""

        exit_code: int = _EXIT_LAUNCHER_FAILURE


    class _CorruptPayload(_LauncherError):
        exit_code = _EXIT_CORRUPT_PAYLOAD


    class _DecompressionFailure(_LauncherError):
        exit_code = _EXIT_DECOMPRESSION_FAILURE


    class _StagingFailure(_LauncherError):
        exit_code = _EXIT_STAGING_FAILURE


    class _SpawnFailure(_LauncherError):
        exit_code = _EXIT_SPAWN_FAILURE


    def _parse_env_bool(value: str) -> bool | None:
        """Parse a string into a boolean.

        :param value: Raw environment variable string.
        :returns: Parsed boolean, or ``None`` if unknown.
        """

        v: str = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
        return None


    def _trace(message: str) -> None:
        raw: str = os.environ.get("__BF_DEBUG_ENV__", "")
        if _parse_env_bool(raw) is True:
            sys.stderr.write(f"binary-flattener: {message}\n")
            sys.stderr.flush()


    def _warn(message: str) -> None:
        sys.stderr.write(f"binary-flattener: warning: {message}\n")
        sys.stderr.flush()


    def _decode(literal: str) -> bytes:
        """Decode the embedded base64 literal.

        :param literal: Wrapped base64 text.
        :returns: Embedded bytes.
        :raises _CorruptPayload: If the literal is not valid base64.
        """

        compact: str = "".join(literal.split())
        if len(compact) % 4 != 0:
            raise _CorruptPayload(f"payload length {len(compact)} is not a multiple of 4")
        try:
            return base64.b64decode(compact.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise _CorruptPayload(f"payload is not valid base64: {exc}") from exc


    def _decompress(data: bytes) -> bytes:
        try:
            return zlib.decompress(data)
        except zlib.error as exc:
            raise _DecompressionFailure(f"cannot decompress payload: {exc}") from exc


    def _verify(data: bytes) -> None:
        """Check the staged bytes against the embedded size and digest.

        :param data: Bytes about to be staged.
        :raises _CorruptPayload: On mismatch.
        """

        if len(data) != _STAGED_SIZE:
            raise _CorruptPayload(f"payload holds {len(data)} bytes, expected {_STAGED_SIZE}")
        digest: str = hashlib.sha256(data).hexdigest()
        if digest != _STAGED_SHA256:
            raise _CorruptPayload("payload checksum mismatch (corrupt file)")


    def _staging_root() -> str:
        override: str | None = os.environ.get("__BF_STAGING_DIR_ENV__")
        if override is not None and len(override) > 0:
            return override
        return tempfile.gettempdir()


    def _remove_quietly(path: str, remove: Callable[[str], None]) -> None:
        """Remove ``path``, reporting (not raising) failures.

        :param path: File or directory path.
        :param remove: ``os.unlink`` or ``os.rmdir``.
        """

        try:
            remove(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            _warn(f"could not remove {path}: {exc}")


    @contextlib.contextmanager
    def _staged_executable(data: bytes) -> Iterator[str]:
        """Write ``data`` to a private executable file and remove it on exit.

        The file lives in a fresh ``0700`` directory whose name combines the
        process id with a random suffix, so concurrent launchers never share a
        path.

        :param data: Executable bytes.
        :returns: Context manager yielding the staged file path.
        :raises _StagingFailure: If the directory or file cannot be created.
        """

        root: str = _staging_root()
        try:
            stage_dir: str = tempfile.mkdtemp(prefix=f"binary_flattener_{os.getpid()}_", dir=root)
        except OSError as exc:
            raise _StagingFailure(f"cannot create a staging directory in {root}: {exc}") from exc

        path: str = os.path.join(stage_dir, _STAGED_NAME)
        try:
            try:
                flags: int = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0)
                fd: int = os.open(path, flags, stat.S_IRWXU)
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.chmod(path, stat.S_IRWXU)
            except OSError as exc:
                raise _StagingFailure(f"cannot write {path}: {exc}") from exc
            _trace(f"staged {len(data)} bytes at {path}")
            yield path
        finally:
            _remove_quietly(path, os.unlink)
            _remove_quietly(stage_dir, os.rmdir)
            _trace(f"removed {stage_dir}")


    class _Interrupted(Exception):
        """A termination signal arrived before a child existed to receive it."""

        def __init__(self, signum: int) -> None:
            super().__init__(f"interrupted by signal {signum}")
            self.signum: int = signum


    def _terminal_delivers_to_child() -> bool:
        """Whether the controlling terminal signals our whole process group.

        The child shares the launcher's process group, so when that group is in
        the terminal foreground a keyboard SIGINT/SIGQUIT already reached it.

        :returns: ``True`` if the signal should not be relayed again.
        """

        if hasattr(os, "tcgetpgrp") is False:
            return True
        for fd in (0, 1, 2):
            try:
                return os.tcgetpgrp(fd) == os.getpgrp()
            except OSError:
                continue
        return False


    class _SignalRelay:
        """Relay termination signals to the child.

        Handlers are installed before staging. A signal that arrives while no
        child exists is held as pending: :meth:`checkpoint` turns it into
        :class:`_Interrupted`, and :meth:`attach` forwards it to a child that
        was spawned in the meantime.
        """

        _SIGNALS: tuple[str, ...] = ("SIGINT", "SIGQUIT", "SIGTERM", "SIGHUP")
        _KEYBOARD: tuple[str, ...] = ("SIGINT", "SIGQUIT")

        def __init__(self) -> None:
            self._proc: subprocess.Popen | None = None
            self._pending: int | None = None
            self._previous: dict[int, object] = {}
            self._keyboard: set[int] = {
                getattr(signal, name) for name in self._KEYBOARD if hasattr(signal, name) is True
            }

        def __enter__(self) -> "_SignalRelay":
            for name in self._SIGNALS:
                signum: int | None = getattr(signal, name, None)
                if signum is None:
                    continue
                try:
                    previous: object = signal.signal(signum, self._handle)
                except (OSError, ValueError):
                    continue
                self._previous[signum] = previous
                if previous == signal.SIG_IGN:
                    signal.signal(signum, signal.SIG_IGN)
            return self

        def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
            for signum, handler in self._previous.items():
                signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
            self._previous.clear()
            return False

        def _handle(self, signum: int, frame: object) -> None:
            if self._proc is None:
                _trace(f"signal {signum} received before the child started")
                self._pending = signum
                return
            if signum in self._keyboard and _terminal_delivers_to_child() is True:
                _trace(f"signal {signum} already delivered to the child by the terminal")
                return
            self._forward(signum)

        def _forward(self, signum: int) -> None:
            if self._proc is None:
                return
            _trace(f"forwarding signal {signum} to pid {self._proc.pid}")
            try:
                self._proc.send_signal(signum)
            except (OSError, ValueError):
                pass

        def checkpoint(self) -> None:
            """Abort if a signal arrived before the child was started.

            :raises _Interrupted: If a signal is pending.
            """

            if self._pending is not None:
                raise _Interrupted(self._pending)

        def attach(self, proc: subprocess.Popen) -> None:
            """Start relaying to ``proc``, forwarding any pending signal.

            :param proc: Freshly spawned child.
            """

            self._proc = proc
            if self._pending is not None:
                signum: int = self._pending
                self._pending = None
                self._forward(signum)


    def _execute(path: str, relay: _SignalRelay) -> int:
        """Run the staged executable and wait for it.

        :param path: Staged executable path.
        :param relay: Active signal relay.
        :returns: Child return code (negative for a terminating signal).
        :raises _SpawnFailure: If the file cannot be executed.
        """

        argv: list[str] = [sys.argv[0], *sys.argv[1:]]
        try:
            proc: subprocess.Popen = subprocess.Popen(argv, executable=path)
        except OSError as exc:
            raise _SpawnFailure(f"cannot execute {path}: {exc}") from exc

        relay.attach(proc)
        _trace(f"started pid {proc.pid}")
        returncode: int = proc.wait()
        _trace(f"pid {proc.pid} finished with {returncode}")
        return returncode


    def _launch(literal: str, compressed: bool) -> int:
        with _SignalRelay() as relay:
            data: bytes = _decode(literal)
            if compressed is True:
                data = _decompress(data)
            _verify(data)
            relay.checkpoint()
            with _staged_executable(data) as path:
                relay.checkpoint()
                return _execute(path, relay)


    def _exit_like(returncode: int) -> None:
        """Terminate this process the same way the child terminated.

        :param returncode: ``Popen.returncode`` of the child.
        """

        if returncode >= 0:
            raise SystemExit(returncode)

        signum: int = -returncode
        sys.stdout.flush()
        sys.stderr.flush()
        try:
            signal.signal(signum, signal.SIG_DFL)
        except (OSError, ValueError):
            pass
        os.kill(os.getpid(), signum)
        raise SystemExit(128 + signum)


    def main() -> None:
        """Program entrypoint."""

        try:
            returncode: int = _launch(_PAYLOAD, _COMPRESSED)
        except _LauncherError as exc:
            sys.stderr.write(f"binary-flattener: {exc}\n")
            raise SystemExit(exc.exit_code)
        except _Interrupted as exc:
            _trace(str(exc))
            _exit_like(-exc.signum)
        _exit_like(returncode)


    if __name__ == "__main__":
        main()
    __BF_SOURCE__'''
).lstrip()


_RUST_TEXT: str = textwrap.dedent(
    r'''
    // This file was generated by binary-flattener. It embeds a compiled executable.
    //
    // At startup it decodes the payload below, stages it as a private temporary
    // executable, runs it with this process's arguments, environment and standard
    // streams, removes the staged copy and exits with the child's exit status.
    //
    // Build it with the standard toolchain, e.g. `rustc --edition 2021 -O main.rs`.
    // Set __BF_STAGING_DIR_ENV__ to choose the staging directory and
    // __BF_DEBUG_ENV__=1 to trace the launcher on stderr.

    #![allow(dead_code)]

    use std::collections::hash_map::RandomState;
    use std::env;
    use std::ffi::OsString;
    use std::fmt;
    use std::fs;
    use std::hash::{BuildHasher, Hasher};
    use std::io::{self, Write};
    use std::path::{Path, PathBuf};
    use std::process::{self, Command, ExitStatus};
    use std::time::{SystemTime, UNIX_EPOCH};

    const COMPRESSED: bool = __BF_COMPRESSED__;
    const STAGED_NAME: &str = "__BF_STAGED_NAME__";
    const STAGED_SIZE: usize = __BF_STAGED_SIZE__;
    const EMBEDDED_SIZE: usize = __BF_EMBEDDED_SIZE__;

    const EXIT_LAUNCHER_FAILURE: i32 = __BF_EXIT_LAUNCHER_FAILURE__;
    const EXIT_CORRUPT_PAYLOAD: i32 = __BF_EXIT_CORRUPT_PAYLOAD__;
    const EXIT_DECOMPRESSION_FAILURE: i32 = __BF_EXIT_DECOMPRESSION_FAILURE__;
    const EXIT_STAGING_FAILURE: i32 = __BF_EXIT_STAGING_FAILURE__;
    const EXIT_SPAWN_FAILURE: i32 = __BF_EXIT_SPAWN_FAILURE__;

    static PAYLOAD: [u8; __BF_EMBEDDED_SIZE__] = [
    __BF_PAYLOAD__
    ];

    enum Failure {
        CorruptPayload(String),
        Decompression(String),
        Staging(String),
        Spawn(String),
        Interrupted(i32),
    }

    impl Failure {
        fn exit_code(&self) -> i32 {
            match self {
                Failure::CorruptPayload(_) => EXIT_CORRUPT_PAYLOAD,
                Failure::Decompression(_) => EXIT_DECOMPRESSION_FAILURE,
                Failure::Staging(_) => EXIT_STAGING_FAILURE,
                Failure::Spawn(_) => EXIT_SPAWN_FAILURE,
                Failure::Interrupted(signum) => 128 + signum,
            }
        }
    }

    impl fmt::Display for Failure {
        fn fmt(&self, f: &mut fmt::Formatter<'_>) -> fmt::Result {
            match self {
                Failure::CorruptPayload(msg) => write!(f, "corrupt payload: {}", msg),
                Failure::Decompression(msg) => write!(f, "cannot decompress payload: {}", msg),
                Failure::Staging(msg) => write!(f, "cannot stage executable: {}", msg),
                Failure::Spawn(msg) => write!(f, "cannot run executable: {}", msg),
                Failure::Interrupted(signum) => write!(f, "interrupted by signal {}", signum),
            }
        }
    }

    fn debug_enabled() -> bool {
        match env::var("__BF_DEBUG_ENV__") {
            Ok(value) => matches!(
                value.trim().to_ascii_lowercase().as_str(),
                "1" | "true" | "yes" | "on"
            ),
            Err(_) => false,
        }
    }

    fn trace(message: &str) {
        if debug_enabled() {
            eprintln!("binary-flattener: {}", message);
        }
    }

    // Minimal zlib (RFC 1950/1951) decoder so the launcher needs nothing but std.
    mod inflate {
        const LENGTH_BASE: [u16; 29] = [
            3, 4, 5, 6, 7, 8, 9, 10, 11, 13, 15, 17, 19, 23, 27, 31, 35, 43, 51, 59, 67, 83, 99,
            115, 131, 163, 195, 227, 258,
        ];
        const LENGTH_EXTRA: [u8; 29] = [
            0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 2, 2, 2, 2, 3, 3, 3, 3, 4, 4, 4, 4, 5, 5, 5, 5, 0,
        ];
        const DIST_BASE: [u16; 30] = [
            1, 2, 3, 4, 5, 7, 9, 13, 17, 25, 33, 49, 65, 97, 129, 193, 257, 385, 513, 769, 1025,
            1537, 2049, 3073, 4097, 6145, 8193, 12289, 16385, 24577,
        ];
        const DIST_EXTRA: [u8; 30] = [
            0, 0, 0, 0, 1, 1, 2, 2, 3, 3, 4, 4, 5, 5, 6, 6, 7, 7, 8, 8, 9, 9, 10, 10, 11, 11, 12,
            12, 13, 13,
        ];
        const CODE_LENGTH_ORDER: [usize; 19] = [
            16, 17, 18, 0, 8, 7, 9, 6, 10, 5, 11, 4, 12, 3, 13, 2, 14, 1, 15,
        ];

        struct Bits<'a> {
            data: &'a [u8],
            pos: usize,
            buf: u64,
            count: u32,
        }

        impl<'a> Bits<'a> {
            fn take(&mut self, need: u32) -> Result<u32, String> {
                while self.count < need {
                    let byte = match self.data.get(self.pos) {
                        Some(byte) => *byte,
                        None => return Err(String::from("unexpected end of compressed data")),
                    };
                    self.buf |= (byte as u64) << self.count;
                    self.pos += 1;
                    self.count += 8;
                }
                let value = (self.buf & ((1u64 << need) - 1)) as u32;
                self.buf >>= need;
                self.count -= need;
                Ok(value)
            }

            fn align(&mut self) {
                self.buf = 0;
                self.count = 0;
            }
        }

        struct Huffman {
            counts: [u16; 16],
            symbols: Vec<u16>,
        }

        impl Huffman {
            fn new(lengths: &[u8]) -> Huffman {
                let mut counts = [0u16; 16];
                for &len in lengths {
                    counts[len as usize] += 1;
                }
                let mut offsets = [0u16; 16];
                for len in 1..15 {
                    offsets[len + 1] = offsets[len] + counts[len];
                }
                let mut symbols = vec![0u16; lengths.len()];
                for (symbol, &len) in lengths.iter().enumerate() {
                    if len != 0 {
                        symbols[offsets[len as usize] as usize] = symbol as u16;
                        offsets[len as usize] += 1;
                    }
                }
                Huffman { counts, symbols }
            }

            fn decode(&self, bits: &mut Bits<'_>) -> Result<u16, String> {
                let mut code: i32 = 0;
                let mut first: i32 = 0;
                let mut index: i32 = 0;
                for len in 1..16 {
                    code |= bits.take(1)? as i32;
                    let count = self.counts[len] as i32;
                    if code - count < first {
                        return Ok(self.symbols[(index + (code - first)) as usize]);
                    }
                    index += count;
                    first += count;
                    first <<= 1;
                    code <<= 1;
                }
                Err(String::from("invalid Huffman code"))
            }
        }

        fn stored(bits: &mut Bits<'_>, out: &mut Vec<u8>) -> Result<(), String> {
            bits.align();
            let len = bits.take(16)?;
            let nlen = bits.take(16)?;
            if len != !nlen & 0xffff {
                return Err(String::from("stored block length mismatch"));
            }
            let start = bits.pos;
            let end = start + len as usize;
            if end > bits.data.len() {
                return Err(String::from("unexpected end of compressed data"));
            }
            out.extend_from_slice(&bits.data[start..end]);
            bits.pos = end;
            Ok(())
        }

        fn fixed_tables() -> (Huffman, Huffman) {
            let mut lengths = [0u8; 288];
            for (symbol, len) in lengths.iter_mut().enumerate() {
                *len = match symbol {
                    0..=143 => 8,
                    144..=255 => 9,
                    256..=279 => 7,
                    _ => 8,
                };
            }
            (Huffman::new(&lengths), Huffman::new(&[5u8; 30]))
        }

        fn dynamic_tables(bits: &mut Bits<'_>) -> Result<(Huffman, Huffman), String> {
            let nlen = bits.take(5)? as usize + 257;
            let ndist = bits.take(5)? as usize + 1;
            let ncode = bits.take(4)? as usize + 4;
            if nlen > 286 || ndist > 30 {
                return Err(String::from("bad code counts"));
            }

            let mut code_lengths = [0u8; 19];
            for &index in CODE_LENGTH_ORDER.iter().take(ncode) {
                code_lengths[index] = bits.take(3)? as u8;
            }
            let lencode = Huffman::new(&code_lengths);

            let total = nlen + ndist;
            let mut lengths = vec![0u8; total];
            let mut index = 0;
            while index < total {
                let symbol = lencode.decode(bits)?;
                if symbol < 16 {
                    lengths[index] = symbol as u8;
                    index += 1;
                    continue;
                }
                let (value, repeat) = match symbol {
                    16 => {
                        if index == 0 {
                            return Err(String::from("repeat without a previous length"));
                        }
                        (lengths[index - 1], 3 + bits.take(2)? as usize)
                    }
                    17 => (0, 3 + bits.take(3)? as usize),
                    _ => (0, 11 + bits.take(7)? as usize),
                };
                if index + repeat > total {
                    return Err(String::from("too many code lengths"));
                }
                for _ in 0..repeat {
                    lengths[index] = value;
                    index += 1;
                }
            }
            if lengths[256] == 0 {
                return Err(String::from("missing end-of-block code"));
            }
            Ok((Huffman::new(&lengths[..nlen]), Huffman::new(&lengths[nlen..])))
        }

        fn codes(
            bits: &mut Bits<'_>,
            out: &mut Vec<u8>,
            lencode: &Huffman,
            distcode: &Huffman,
        ) -> Result<(), String> {
            loop {
                let symbol = lencode.decode(bits)? as usize;
                if symbol < 256 {
                    out.push(symbol as u8);
                    continue;
                }
                if symbol == 256 {
                    return Ok(());
                }
                let symbol = symbol - 257;
                if symbol >= 29 {
                    return Err(String::from("invalid length symbol"));
                }
                let length =
                    LENGTH_BASE[symbol] as usize + bits.take(LENGTH_EXTRA[symbol] as u32)? as usize;
                let dsym = distcode.decode(bits)? as usize;
                if dsym >= 30 {
                    return Err(String::from("invalid distance symbol"));
                }
                let distance =
                    DIST_BASE[dsym] as usize + bits.take(DIST_EXTRA[dsym] as u32)? as usize;
                if distance > out.len() {
                    return Err(String::from("distance too far back"));
                }
                let start = out.len() - distance;
                for offset in 0..length {
                    let byte = out[start + offset];
                    out.push(byte);
                }
            }
        }

        fn adler32(data: &[u8]) -> u32 {
            let mut a: u32 = 1;
            let mut b: u32 = 0;
            for &byte in data {
                a = (a + byte as u32) % 65521;
                b = (b + a) % 65521;
            }
            (b << 16) | a
        }

        pub fn zlib_decompress(data: &[u8], size_hint: usize) -> Result<Vec<u8>, String> {
            if data.len() < 6 {
                return Err(String::from("compressed payload is truncated"));
            }
            let cmf = data[0];
            let flg = data[1];
            if cmf & 0x0f != 8 || ((((cmf as u16) << 8) | flg as u16) % 31) != 0 || flg & 0x20 != 0 {
                return Err(String::from("invalid zlib header"));
            }

            let mut bits = Bits { data: &data[2..], pos: 0, buf: 0, count: 0 };
            let mut out = Vec::with_capacity(size_hint);
            loop {
                let last = bits.take(1)?;
                match bits.take(2)? {
                    0 => stored(&mut bits, &mut out)?,
                    1 => {
                        let (lencode, distcode) = fixed_tables();
                        codes(&mut bits, &mut out, &lencode, &distcode)?;
                    }
                    2 => {
                        let (lencode, distcode) = dynamic_tables(&mut bits)?;
                        codes(&mut bits, &mut out, &lencode, &distcode)?;
                    }
                    _ => return Err(String::from("invalid block type")),
                }
                if last == 1 {
                    break;
                }
            }

            let trailer = &data[2 + bits.pos..];
            if trailer.len() < 4 {
                return Err(String::from("missing Adler-32 checksum"));
            }
            let expected = u32::from_be_bytes([trailer[0], trailer[1], trailer[2], trailer[3]]);
            if adler32(&out) != expected {
                return Err(String::from("Adler-32 checksum mismatch"));
            }
            Ok(out)
        }
    }

    #[cfg(unix)]
    mod signals {
        use std::sync::atomic::{AtomicI32, AtomicUsize, Ordering};

        const SIGHUP: i32 = 1;
        const SIGINT: i32 = 2;
        const SIGQUIT: i32 = 3;
        const SIGTERM: i32 = 15;
        const SIG_DFL: usize = 0;
        const SIG_IGN: usize = 1;
        const RELAYED: [i32; 4] = [SIGINT, SIGQUIT, SIGTERM, SIGHUP];

        static CHILD: AtomicI32 = AtomicI32::new(0);
        static PENDING: AtomicI32 = AtomicI32::new(0);
        static PREVIOUS: [AtomicUsize; 4] = [
            AtomicUsize::new(SIG_DFL),
            AtomicUsize::new(SIG_DFL),
            AtomicUsize::new(SIG_DFL),
            AtomicUsize::new(SIG_DFL),
        ];

        unsafe extern "C" {
            fn signal(signum: i32, handler: usize) -> usize;
            fn kill(pid: i32, sig: i32) -> i32;
            fn raise(sig: i32) -> i32;
            fn getpgrp() -> i32;
            fn tcgetpgrp(fd: i32) -> i32;
        }

        // True when the controlling terminal signals our whole process group,
        // which the child shares.
        fn terminal_delivers_to_child() -> bool {
            let own = unsafe { getpgrp() };
            for fd in 0..3 {
                let foreground = unsafe { tcgetpgrp(fd) };
                if foreground >= 0 {
                    return foreground == own;
                }
            }
            false
        }

        extern "C" fn relay(signum: i32) {
            let pid = CHILD.load(Ordering::SeqCst);
            if pid <= 0 {
                PENDING.store(signum, Ordering::SeqCst);
                return;
            }
            if (signum == SIGINT || signum == SIGQUIT) && terminal_delivers_to_child() {
                return;
            }
            unsafe {
                kill(pid, signum);
            }
        }

        pub fn install() {
            for (slot, signum) in RELAYED.iter().enumerate() {
                let previous = unsafe { signal(*signum, relay as extern "C" fn(i32) as usize) };
                if previous == SIG_IGN {
                    unsafe {
                        signal(*signum, SIG_IGN);
                    }
                }
                PREVIOUS[slot].store(previous, Ordering::SeqCst);
            }
        }

        pub fn pending() -> Option<i32> {
            match PENDING.load(Ordering::SeqCst) {
                0 => None,
                signum => Some(signum),
            }
        }

        pub fn attach(pid: u32) {
            CHILD.store(pid as i32, Ordering::SeqCst);
            let signum = PENDING.swap(0, Ordering::SeqCst);
            if signum != 0 {
                unsafe {
                    kill(pid as i32, signum);
                }
            }
        }

        pub fn restore() {
            for (slot, signum) in RELAYED.iter().enumerate() {
                unsafe {
                    signal(*signum, PREVIOUS[slot].load(Ordering::SeqCst));
                }
            }
            CHILD.store(0, Ordering::SeqCst);
        }

        pub fn reraise(signum: i32) {
            unsafe {
                signal(signum, SIG_DFL);
                raise(signum);
            }
        }
    }

    #[cfg(not(unix))]
    mod signals {
        pub fn install() {}

        pub fn pending() -> Option<i32> {
            None
        }

        pub fn attach(_pid: u32) {}

        pub fn restore() {}

        pub fn reraise(_signum: i32) {}
    }

    struct StagedExecutable {
        dir: PathBuf,
        path: PathBuf,
        removed: bool,
    }

    impl StagedExecutable {
        fn create(data: &[u8]) -> Result<StagedExecutable, Failure> {
            let root = staging_root();
            let dir = create_private_dir(&root).map_err(|err| {
                Failure::Staging(format!(
                    "cannot create a staging directory in {}: {}",
                    root.display(),
                    err
                ))
            })?;
            // From here on, Drop removes whatever was created.
            let staged = StagedExecutable { path: dir.join(STAGED_NAME), dir, removed: false };
            write_executable(&staged.path, data).map_err(|err| {
                Failure::Staging(format!("cannot write {}: {}", staged.path.display(), err))
            })?;
            trace(&format!("staged {} bytes at {}", data.len(), staged.path.display()));
            Ok(staged)
        }

        fn remove(&mut self) {
            if self.removed {
                return;
            }
            self.removed = true;
            if let Err(err) = fs::remove_file(&self.path) {
                if err.kind() != io::ErrorKind::NotFound {
                    eprintln!(
                        "binary-flattener: warning: could not remove {}: {}",
                        self.path.display(),
                        err
                    );
                }
            }
            if let Err(err) = fs::remove_dir(&self.dir) {
                if err.kind() != io::ErrorKind::NotFound {
                    eprintln!(
                        "binary-flattener: warning: could not remove {}: {}",
                        self.dir.display(),
                        err
                    );
                }
            }
            trace(&format!("removed {}", self.dir.display()));
        }
    }

    impl Drop for StagedExecutable {
        fn drop(&mut self) {
            self.remove();
        }
    }

    fn staging_root() -> PathBuf {
        match env::var_os("__BF_STAGING_DIR_ENV__") {
            Some(dir) if !dir.is_empty() => PathBuf::from(dir),
            _ => env::temp_dir(),
        }
    }

    fn create_private_dir(root: &Path) -> io::Result<PathBuf> {
        let pid = process::id();
        for _ in 0..16 {
            let mut hasher = RandomState::new().build_hasher();
            hasher.write_u32(pid);
            let nanos = SystemTime::now()
                .duration_since(UNIX_EPOCH)
                .map(|d| d.as_nanos())
                .unwrap_or(0);
            hasher.write_u128(nanos);
            let dir = root.join(format!("binary_flattener_{}_{:016x}", pid, hasher.finish()));

            let mut builder = fs::DirBuilder::new();
            #[cfg(unix)]
            {
                use std::os::unix::fs::DirBuilderExt;
                builder.mode(0o700);
            }
            match builder.create(&dir) {
                Ok(()) => return Ok(dir),
                Err(err) if err.kind() == io::ErrorKind::AlreadyExists => continue,
                Err(err) => return Err(err),
            }
        }
        Err(io::Error::new(
            io::ErrorKind::AlreadyExists,
            "no unused staging directory name found",
        ))
    }

    fn write_executable(path: &Path, data: &[u8]) -> io::Result<()> {
        let mut options = fs::OpenOptions::new();
        options.write(true).create_new(true);
        #[cfg(unix)]
        {
            use std::os::unix::fs::OpenOptionsExt;
            options.mode(0o700);
        }
        let mut file = options.open(path)?;
        file.write_all(data)?;
        file.flush()?;
        drop(file);
        #[cfg(unix)]
        {
            use std::os::unix::fs::PermissionsExt;
            fs::set_permissions(path, fs::Permissions::from_mode(0o700))?;
        }
        Ok(())
    }

    fn unpack(payload: &[u8], compressed: bool) -> Result<Vec<u8>, Failure> {
        if payload.len() != EMBEDDED_SIZE {
            return Err(Failure::CorruptPayload(format!(
                "embedded payload holds {} bytes, expected {}",
                payload.len(),
                EMBEDDED_SIZE
            )));
        }
        let data = if compressed {
            inflate::zlib_decompress(payload, STAGED_SIZE).map_err(Failure::Decompression)?
        } else {
            payload.to_vec()
        };
        if data.len() != STAGED_SIZE {
            return Err(Failure::CorruptPayload(format!(
                "payload holds {} bytes, expected {}",
                data.len(),
                STAGED_SIZE
            )));
        }
        Ok(data)
    }

    #[cfg(unix)]
    fn set_arg0(command: &mut Command, arg0: Option<OsString>) {
        use std::os::unix::process::CommandExt;
        if let Some(arg0) = arg0 {
            command.arg0(arg0);
        }
    }

    #[cfg(not(unix))]
    fn set_arg0(_command: &mut Command, _arg0: Option<OsString>) {}

    fn execute(path: &Path) -> Result<ExitStatus, Failure> {
        let mut args = env::args_os();
        let arg0 = args.next();
        let mut command = Command::new(path);
        command.args(args);
        set_arg0(&mut command, arg0);

        let mut child = command.spawn().map_err(|err| {
            Failure::Spawn(format!("cannot execute {}: {}", path.display(), err))
        })?;
        trace(&format!("started pid {}", child.id()));
        signals::attach(child.id());
        let status = child
            .wait()
            .map_err(|err| Failure::Spawn(format!("cannot wait for the child process: {}", err)))?;
        trace(&format!("child finished with {}", status));
        Ok(status)
    }

    // Abort before the child exists if a relayed signal already arrived.
    fn checkpoint() -> Result<(), Failure> {
        match signals::pending() {
            Some(signum) => Err(Failure::Interrupted(signum)),
            None => Ok(()),
        }
    }

    fn stage_and_run(payload: &[u8], compressed: bool) -> Result<ExitStatus, Failure> {
        let data = unpack(payload, compressed)?;
        checkpoint()?;
        let mut staged = StagedExecutable::create(&data)?;
        drop(data);
        checkpoint()?;
        let status = execute(&staged.path);
        staged.remove();
        status
    }

    fn launch(payload: &[u8], compressed: bool) -> Result<ExitStatus, Failure> {
        signals::install();
        let result = stage_and_run(payload, compressed);
        signals::restore();
        result
    }

    fn exit_by_signal(signum: i32) -> ! {
        let _ = io::stderr().flush();
        signals::reraise(signum);
        process::exit(128 + signum)
    }

    fn exit_like(status: ExitStatus) -> ! {
        if let Some(code) = status.code() {
            process::exit(code);
        }
        #[cfg(unix)]
        {
            use std::os::unix::process::ExitStatusExt;
            if let Some(signum) = status.signal() {
                exit_by_signal(signum);
            }
        }
        process::exit(EXIT_LAUNCHER_FAILURE)
    }

    fn run(payload: &[u8], compressed: bool) -> ! {
        match launch(payload, compressed) {
            Ok(status) => exit_like(status),
            Err(Failure::Interrupted(signum)) => {
                trace(&format!("interrupted by signal {}", signum));
                exit_by_signal(signum)
            }
            Err(failure) => {
                eprintln!("binary-flattener: {}", failure);
                process::exit(failure.exit_code())
            }
        }
    }

    fn main() {
        run(&PAYLOAD, COMPRESSED)
    }
    __BF_SOURCE__'''
).lstrip()


PYTHON_TEMPLATE: LauncherTemplate = LauncherTemplate(
    language="Python",
    text=_PYTHON_TEXT,
    true_literal="True",
    false_literal="False",
    comment_prefix="#",
    payload_pattern=re.compile(r'^_PAYLOAD: str = r"""(?P<literal>.*?)"""', re.MULTILINE | re.DOTALL),
    compressed_pattern=re.compile(r"^_COMPRESSED: bool = (?P<flag>True|False)$", re.MULTILINE),
)

RUST_TEMPLATE: LauncherTemplate = LauncherTemplate(
    language="Rust",
    text=_RUST_TEXT,
    true_literal="true",
    false_literal="false",
    comment_prefix="//",
    payload_pattern=re.compile(
        r"^static PAYLOAD: \[u8; \d+\] = \[(?P<literal>.*?)\];", re.MULTILINE | re.DOTALL
    ),
    compressed_pattern=re.compile(r"^const COMPRESSED: bool = (?P<flag>true|false);$", re.MULTILINE),
)
