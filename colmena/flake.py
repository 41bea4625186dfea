"""Nix flake utilities."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .errors import BadOutput, IoError, from_returncode

__all__ = ["FlakeMetadata", "Flake", "lock_flake_quiet"]

_FLAKE_FEATURES = ("--extra-experimental-features", "nix-command flakes")


async def _run_nix(args: list[str], *, stdout=None, stderr=None) -> bytes:
    try:
        process = await asyncio.create_subprocess_exec(
            "nix", *args, stdout=stdout, stderr=stderr
        )
    except OSError as exc:
        raise IoError(exc) from exc
    output, _ = await process.communicate()
    if process.returncode != 0:
        raise from_returncode(process.returncode)
    return output or b""


@dataclass(frozen=True)
class FlakeMetadata:
    """The result of `nix flake metadata --json`."""

    resolved_url: str
    url: str

    @classmethod
    def from_json(cls, data: Union[bytes, str]) -> "FlakeMetadata":
        """Parse metadata JSON, raising BadOutput if it is malformed."""
        if isinstance(data, (bytes, bytearray)):
            text = bytes(data).decode("utf-8", errors="replace")
        else:
            text = data
        try:
            obj = json.loads(text)
        except ValueError:
            raise BadOutput(text) from None
        if not isinstance(obj, dict):
            raise BadOutput(text)
        resolved_url = obj.get("resolvedUrl")
        url = obj.get("url")
        if not isinstance(resolved_url, str) or not isinstance(url, str):
            raise BadOutput(text)
        return cls(resolved_url=resolved_url, url=url)

    @classmethod
    async def resolve(cls, flake: str) -> "FlakeMetadata":
        """Resolve a flake reference by asking Nix for its metadata."""
        output = await _run_nix(
            ["flake", "metadata", "--json", *_FLAKE_FEATURES, flake],
            stdout=asyncio.subprocess.PIPE,
        )
        return cls.from_json(output)


@dataclass(frozen=True)
class Flake:
    """A Nix flake, optionally backed by a local directory."""

    metadata: FlakeMetadata
    directory: Optional[Path] = None

    @classmethod
    async def from_dir(cls, directory: Union[str, Path]) -> "Flake":
        """Create a flake from a local directory."""
        path = Path(directory)
        metadata = await FlakeMetadata.resolve(str(path))
        return cls(metadata, path)

    @classmethod
    async def from_uri(cls, uri: str) -> "Flake":
        """Create a flake from a flake URI."""
        metadata = await FlakeMetadata.resolve(uri)
        return cls(metadata)

    @property
    def uri(self) -> str:
        """The resolved URI."""
        return self.metadata.resolved_url

    @property
    def locked_uri(self) -> str:
        """The locked URI; not locked if the git workspace is dirty."""
        return self.metadata.url

    @property
    def local_dir(self) -> Optional[Path]:
        """The local directory of the flake, if any."""
        return self.directory


async def lock_flake_quiet(uri: str) -> None:
    """Lock the dependencies of a flake, discarding Nix's diagnostics."""
    await _run_nix(
        ["flake", "lock", *_FLAKE_FEATURES, uri],
        stderr=asyncio.subprocess.DEVNULL,
    )