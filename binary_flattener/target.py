"""Target resolution helpers.

Two independent lookups live here:

- The output *language* selector (``rust`` / ``python``, case-insensitive)
  maps to a :class:`LanguageTarget`, i.e. the codec + template pair used to
  render the launcher.
- The platform *target* (a Rust-like triple such as
  ``x86_64-pc-windows-msvc``, or ``native``) decides how the staged
  executable is named on the machine that runs the launcher.
"""

from dataclasses import dataclass
import platform
import sys

from binary_flattener.codec import Base64Codec, ByteArrayCodec, PayloadCodec
from binary_flattener.templates import PYTHON_TEMPLATE, RUST_TEMPLATE, LauncherTemplate


class TargetResolutionError(ValueError):
    """Raised when a language selector or target spec cannot be resolved."""


@dataclass(frozen=True, slots=True)
class LanguageTarget:
    """Output language configuration.

    :ivar name: Canonical selector (lower-case).
    :ivar codec: Codec used to embed the payload.
    :ivar template: Launcher template for the language.
    :ivar default_output: Default output filename.
    """

    name: str
    codec: PayloadCodec
    template: LauncherTemplate
    default_output: str


@dataclass(frozen=True, slots=True)
class TargetConfig:
    """Platform the generated launcher is built for.

    :ivar triple: Target triple (``native`` is resolved to the host triple).
    :ivar os_name: OS component of the triple (e.g. ``linux``, ``windows``).
    :ivar executable_suffix: File suffix of executables on that OS.
    """

    triple: str
    os_name: str
    executable_suffix: str


_LANGUAGES: dict[str, LanguageTarget] = {
    "rust": LanguageTarget(
        name="rust",
        codec=ByteArrayCodec(),
        template=RUST_TEMPLATE,
        default_output="main.rs",
    ),
    "python": LanguageTarget(
        name="python",
        codec=Base64Codec(),
        template=PYTHON_TEMPLATE,
        default_output="main.py",
    ),
}


def supported_languages() -> list[str]:
    """Return the accepted language selectors, sorted."""

    return sorted(_LANGUAGES)


def resolve_language(selector: str) -> LanguageTarget:
    """Resolve an output language selector.

    :param selector: Language name, case-insensitive (e.g. ``Rust``).
    :returns: Language configuration.
    :raises TargetResolutionError: If the language is not supported.
    """

    lang: LanguageTarget | None = _LANGUAGES.get(selector.strip().lower())
    if lang is None:
        raise TargetResolutionError(
            f"Unsupported language {selector!r}; expected one of: {', '.join(supported_languages())}."
        )
    return lang


def resolve_target_config(*, target: str) -> TargetConfig:
    """Resolve a user-supplied target into a :class:`~TargetConfig`.

    :param target: A target triple. ``native`` uses the host.
    :returns: Resolved target config.
    :raises TargetResolutionError: If the triple is malformed.
    """

    triple: str = _host_triple() if target == "native" else target.strip()
    parts: list[str] = triple.split("-")
    if len(parts) < 3 or any(p == "" for p in parts):
        raise TargetResolutionError(
            f"Unrecognized target spec {target!r}. Provide a triple like x86_64-unknown-linux-gnu."
        )

    os_name: str = parts[2].lower()
    suffix: str = ".exe" if os_name == "windows" else ""
    return TargetConfig(triple=triple, os_name=os_name, executable_suffix=suffix)


def _normalize_arch(machine: str) -> str:
    """Normalize a machine string into a small set of expected values.

    :param machine: Raw machine string (e.g. from ``platform.machine()``).
    :returns: Normalized architecture string.
    """

    m: str = machine.lower()
    if m == "amd64" or m == "x86_64":
        return "x86_64"
    if m == "arm64" or m == "aarch64":
        return "aarch64"
    if m == "i386" or m == "i686":
        return "i686"
    if m == "":
        return "unknown"
    return m


def _host_triple() -> str:
    """Build a triple describing the current host.

    :returns: Target triple.
    """

    arch: str = _normalize_arch(platform.machine())
    if sys.platform == "win32":
        return f"{arch}-pc-windows-msvc"
    if sys.platform == "darwin":
        return f"{arch}-apple-darwin"
    if sys.platform.startswith("linux") is True:
        return f"{arch}-unknown-linux-gnu"
    return f"{arch}-unknown-{sys.platform}"
