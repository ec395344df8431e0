"""Launcher builder.

This module turns an already-built executable into launcher source:

- It optionally compresses the executable (zlib stream) or validates a
  buffer that an external tool already compressed.
- It encodes the bytes with the codec of the selected language.
- It fills the language's launcher template and writes a single source file
  that, once compiled/run, stages and executes the embedded program.

The inverse, :func:`extract_executable`, recovers the executable from a
generated launcher.
"""

from dataclasses import dataclass
import hashlib
import logging
import pathlib
import re
import time
import zlib

from binary_flattener.codec import CorruptPayloadError
from binary_flattener.target import LanguageTarget, TargetConfig, resolve_language, supported_languages
from binary_flattener import templates


class BuildError(RuntimeError):
    """Raised when generating a launcher fails."""


@dataclass(frozen=True, slots=True)
class Payload:
    """Executable bytes as embedded in a launcher.

    :ivar data: Embedded bytes (zlib stream when ``compressed``).
    :ivar compressed: Whether ``data`` must be inflated before staging.
    :ivar staged_size: Size of the executable the launcher stages.
    :ivar staged_sha256: Hex SHA-256 of the executable the launcher stages.
    """

    data: bytes
    compressed: bool
    staged_size: int
    staged_sha256: str


_PLACEHOLDER_RE: re.Pattern[str] = re.compile(r"__BF_[A-Z0-9_]+__")


def _validate_compresslevel(compresslevel: int) -> None:
    """Validate a zlib compression level.

    :param compresslevel: Compression level (0-9).
    :raises BuildError: If the level is out of range.
    """

    if compresslevel < 0 or compresslevel > 9:
        raise BuildError(f"Invalid compresslevel={compresslevel}; expected 0-9.")


def _format_size(size: int) -> str:
    """Render a byte count for log messages (``B``, ``KiB`` or ``MiB``)."""

    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KiB"
    return f"{size / (1024 * 1024):.1f} MiB"


def make_payload(
    executable: bytes,
    *,
    compress: bool = False,
    precompressed: bool = False,
    compresslevel: int = 9,
) -> Payload:
    """Build the payload for an executable.

    :param executable: Executable bytes, or a zlib stream when ``precompressed``.
    :param compress: Compress ``executable`` with zlib.
    :param precompressed: ``executable`` was already compressed by an external tool.
    :param compresslevel: zlib level used when ``compress`` is set.
    :returns: Immutable payload.
    :raises BuildError: If the options conflict or a precompressed buffer is invalid.
    """

    if compress is True and precompressed is True:
        raise BuildError("Use at most one of --compress and --compressed.")
    _validate_compresslevel(compresslevel)

    if precompressed is True:
        try:
            original: bytes = zlib.decompress(executable)
        except zlib.error as exc:
            raise BuildError(f"Input is not a valid zlib stream: {exc}") from exc
        return Payload(
            data=executable,
            compressed=True,
            staged_size=len(original),
            staged_sha256=hashlib.sha256(original).hexdigest(),
        )

    sha256: str = hashlib.sha256(executable).hexdigest()
    if compress is True:
        return Payload(
            data=zlib.compress(executable, compresslevel),
            compressed=True,
            staged_size=len(executable),
            staged_sha256=sha256,
        )
    return Payload(data=executable, compressed=False, staged_size=len(executable), staged_sha256=sha256)


def staged_name(payload: Payload, target: TargetConfig) -> str:
    """Name of the staged executable, e.g. ``bin1A2B3C4D.exe``.

    :param payload: Payload to embed.
    :param target: Platform the launcher is built for.
    :returns: File name (no directory).
    """

    return f"bin{payload.staged_sha256[0:8].upper()}{target.executable_suffix}"


def render_launcher(
    *,
    payload: Payload,
    language: LanguageTarget,
    target: TargetConfig,
    source_text: str | None = None,
) -> str:
    """Render launcher source for ``payload``.

    Placeholders are substituted in one pass, so inserted text (payload or
    embedded source) is never scanned for further placeholders.

    :param payload: Payload to embed.
    :param language: Output language (codec + template).
    :param target: Platform the launcher is built for.
    :param source_text: Optional source of the executable, embedded as comments.
    :returns: Complete launcher source.
    :raises BuildError: If the template references an unknown placeholder.
    """

    template: templates.LauncherTemplate = language.template
    source_block: str = ""
    if source_text is not None:
        source_block = (
            "\n"
            + template.comment_block("Source of the embedded executable:")
            + template.comment_prefix
            + "\n"
            + template.comment_block(source_text)
        )

    values: dict[str, str] = {
        "__BF_COMPRESSED__": template.bool_literal(payload.compressed),
        "__BF_STAGED_NAME__": staged_name(payload, target),
        "__BF_STAGED_SIZE__": str(payload.staged_size),
        "__BF_STAGED_SHA256__": payload.staged_sha256,
        "__BF_EMBEDDED_SIZE__": str(len(payload.data)),
        "__BF_EXIT_LAUNCHER_FAILURE__": str(templates.EXIT_LAUNCHER_FAILURE),
        "__BF_EXIT_CORRUPT_PAYLOAD__": str(templates.EXIT_CORRUPT_PAYLOAD),
        "__BF_EXIT_DECOMPRESSION_FAILURE__": str(templates.EXIT_DECOMPRESSION_FAILURE),
        "__BF_EXIT_STAGING_FAILURE__": str(templates.EXIT_STAGING_FAILURE),
        "__BF_EXIT_SPAWN_FAILURE__": str(templates.EXIT_SPAWN_FAILURE),
        "__BF_STAGING_DIR_ENV__": templates.STAGING_DIR_ENV,
        "__BF_DEBUG_ENV__": templates.DEBUG_ENV,
        "__BF_PAYLOAD__": language.codec.encode(payload.data),
        "__BF_SOURCE__": source_block,
    }

    def substitute(m: re.Match[str]) -> str:
        value: str | None = values.get(m.group(0))
        if value is None:
            raise BuildError(f"Internal error: template uses unknown placeholder {m.group(0)}.")
        return value

    return _PLACEHOLDER_RE.sub(substitute, template.text)


def extract_executable(source: str, *, language: LanguageTarget | None = None) -> bytes:
    """Recover the executable embedded in a generated launcher.

    :param source: Launcher source text.
    :param language: Launcher language; detected from the source when omitted.
    :returns: Executable bytes (inflated when the launcher is compressed).
    :raises BuildError: If no embedded payload is found or it cannot be inflated.
    :raises CorruptPayloadError: If the literal does not decode.
    """

    candidates: list[LanguageTarget]
    if language is not None:
        candidates = [language]
    else:
        candidates = [resolve_language(name) for name in supported_languages()]

    for lang in candidates:
        m_payload: re.Match[str] | None = lang.template.payload_pattern.search(source)
        m_flag: re.Match[str] | None = lang.template.compressed_pattern.search(source)
        if m_payload is None or m_flag is None:
            continue

        data: bytes = lang.codec.decode(m_payload.group("literal"))
        if m_flag.group("flag") != lang.template.true_literal:
            return data
        try:
            return zlib.decompress(data)
        except zlib.error as exc:
            raise BuildError(f"Embedded payload cannot be decompressed: {exc}") from exc

    raise BuildError("No embedded payload found; is this a binary-flattener launcher?")


def build_launcher(
    *,
    input_path: pathlib.Path,
    output_path: pathlib.Path,
    language: LanguageTarget,
    target: TargetConfig,
    compress: bool = False,
    precompressed: bool = False,
    source_path: pathlib.Path | None = None,
    logger: logging.Logger | None = None,
    compresslevel: int = 9,
) -> None:
    """Generate a launcher source file for an executable.

    :param input_path: Built executable (zlib stream when ``precompressed``).
    :param output_path: Output path for the launcher source.
    :param language: Output language.
    :param target: Platform the launcher is built for.
    :param compress: Compress the executable with zlib before embedding.
    :param precompressed: The input is already a zlib stream.
    :param source_path: Optional source file embedded as a trailing comment.
    :param logger: Optional logger for progress output.
    :param compresslevel: zlib level used when ``compress`` is set.
    :raises BuildError: If reading the input or writing the output fails.
    """

    if logger is None:
        logger = logging.getLogger("binary_flattener")

    if input_path.is_file() is False:
        raise BuildError(f"Input executable does not exist: {input_path}")

    t_total0: float = time.perf_counter()
    logger.info(f"binary-flattener: input={input_path}")
    logger.info(f"binary-flattener: output={output_path}")
    logger.info(f"binary-flattener: language={language.name} target={target.triple}")

    try:
        executable: bytes = input_path.read_bytes()
    except OSError as exc:
        raise BuildError(f"Cannot read {input_path}: {exc}") from exc

    payload: Payload = make_payload(
        executable,
        compress=compress,
        precompressed=precompressed,
        compresslevel=compresslevel,
    )
    logger.info(f"binary-flattener: binary size {_format_size(payload.staged_size)}")
    if payload.compressed is True:
        logger.info(f"binary-flattener: compressed size {_format_size(len(payload.data))}")

    source_text: str | None = None
    if source_path is not None:
        try:
            source_text = source_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            logger.warning(f"binary-flattener: cannot read source {source_path}; embedding a note instead")
            source_text = "SOURCE CODE NOT FOUND"

    code: str = render_launcher(
        payload=payload,
        language=language,
        target=target,
        source_text=source_text,
    )
    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"binary-flattener: staged name={staged_name(payload, target)}")

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8", newline="\n") as f:
            f.write(code)
    except OSError as exc:
        raise BuildError(f"Cannot write {output_path}: {exc}") from exc

    logger.info(f"binary-flattener: bundled code size {_format_size(len(code))}")
    t_total1: float = time.perf_counter()
    logger.info(f"binary-flattener: wrote {output_path} in {t_total1 - t_total0:.2f}s")


def extract_to_file(
    *,
    launcher_path: pathlib.Path,
    output_path: pathlib.Path,
    logger: logging.Logger | None = None,
) -> None:
    """Write the executable embedded in ``launcher_path`` to ``output_path``.

    :param launcher_path: Generated launcher source.
    :param output_path: Destination for the executable bytes.
    :param logger: Optional logger for progress output.
    :raises BuildError: If the launcher cannot be read or holds no valid payload.
    """

    if logger is None:
        logger = logging.getLogger("binary_flattener")

    try:
        source: str = launcher_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise BuildError(f"Cannot read {launcher_path}: {exc}") from exc

    try:
        executable: bytes = extract_executable(source)
    except CorruptPayloadError as exc:
        raise BuildError(f"Embedded payload in {launcher_path} is corrupt: {exc}") from exc

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(executable)
    output_path.chmod(0o755)
    logger.info(f"binary-flattener: extracted {_format_size(len(executable))} to {output_path}")
