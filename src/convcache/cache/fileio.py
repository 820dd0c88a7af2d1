"""File I/O collaborator used by the cache service.

The service only talks to the ``FileIO`` protocol so that tests (or a host
with its own sandboxed filesystem tools) can substitute another backend.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Literal, Protocol, runtime_checkable

from convcache.errors import IOFailure

WriteMode = Literal["rewrite", "append"]


@runtime_checkable
class FileIO(Protocol):
    """Minimal async filesystem contract. Failures raise ``IOFailure``."""

    async def write_file(self, path: Path, content: str, mode: WriteMode = "rewrite") -> None: ...

    async def read_file(
        self, path: Path, is_url: bool = False, offset: int = 0, max_lines: int = 2000
    ) -> str: ...

    async def create_directory(self, path: Path) -> None:
        """Idempotent: succeeds if the directory already exists."""
        ...

    async def directory_exists(self, path: Path) -> bool: ...

    async def list_directory(self, path: Path) -> list[str]: ...


class LocalFileIO:
    """FileIO over the local disk; blocking calls run in a worker thread."""

    async def write_file(self, path: Path, content: str, mode: WriteMode = "rewrite") -> None:
        await asyncio.to_thread(self._write, Path(path), content, mode)

    def _write(self, path: Path, content: str, mode: WriteMode) -> None:
        if mode not in ("rewrite", "append"):
            raise IOFailure(f"Unknown write mode: {mode}", str(path))
        try:
            with path.open("a" if mode == "append" else "w", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            raise IOFailure(f"Failed to write {path}: {e}", str(path)) from e

    async def read_file(
        self, path: Path, is_url: bool = False, offset: int = 0, max_lines: int = 2000
    ) -> str:
        if is_url:
            raise IOFailure("Reading URLs is not supported by the local backend", str(path))
        return await asyncio.to_thread(self._read, Path(path), offset, max_lines)

    def _read(self, path: Path, offset: int, max_lines: int) -> str:
        try:
            lines = path.read_text(encoding="utf-8").splitlines(keepends=True)
        except OSError as e:
            raise IOFailure(f"Failed to read {path}: {e}", str(path)) from e
        window = lines[offset : offset + max_lines]
        text = "".join(window)
        remaining = len(lines) - offset - len(window)
        if remaining > 0:
            text += f"\n... [{remaining} more lines not shown]\n"
        return text

    async def create_directory(self, path: Path) -> None:
        try:
            await asyncio.to_thread(Path(path).mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure(f"Failed to create directory {path}: {e}", str(path)) from e

    async def directory_exists(self, path: Path) -> bool:
        return await asyncio.to_thread(Path(path).is_dir)

    async def list_directory(self, path: Path) -> list[str]:
        try:
            return await asyncio.to_thread(lambda: sorted(p.name for p in Path(path).iterdir()))
        except OSError as e:
            raise IOFailure(f"Failed to list {path}: {e}", str(path)) from e
