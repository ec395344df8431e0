"""binary-flattener.

A small build utility that embeds a compiled executable into a single,
self-launching source file (Rust or Python) that stages and runs it.
"""

__all__: list[str] = ["__version__"]

__version__: str = "0.1.0"
