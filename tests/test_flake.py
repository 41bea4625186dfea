import json
import stat

import pytest

from colmena.errors import BadOutput, ChildFailure, IoError
from colmena.flake import Flake, FlakeMetadata, lock_flake_quiet

FAKE_NIX = r"""#!/bin/sh
printf '%s\n' "$@" > "$FAKE_NIX_ARGS"
printf '%s' "$FAKE_NIX_OUTPUT"
exit "${FAKE_NIX_STATUS:-0}"
"""

RESOLVED = "git+file:///srv/hive"
LOCKED = "git+file:///srv/hive?rev=abc"


@pytest.fixture
def fake_nix(tmp_path, monkeypatch):
    bindir = tmp_path / "bin"
    bindir.mkdir()
    script = bindir / "nix"
    script.write_text(FAKE_NIX)
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    args_file = tmp_path / "args.txt"
    monkeypatch.setenv("PATH", str(bindir))
    monkeypatch.setenv("FAKE_NIX_ARGS", str(args_file))
    monkeypatch.setenv(
        "FAKE_NIX_OUTPUT", json.dumps({"resolvedUrl": RESOLVED, "url": LOCKED})
    )
    return args_file


def test_from_json_reads_urls():
    data = json.dumps({"resolvedUrl": RESOLVED, "url": LOCKED}).encode()
    metadata = FlakeMetadata.from_json(data)
    assert metadata.resolved_url == RESOLVED
    assert metadata.url == LOCKED


def test_from_json_invalid_raises_bad_output():
    with pytest.raises(BadOutput) as info:
        FlakeMetadata.from_json(b"not json")
    assert info.value.output == "not json"


def test_from_json_missing_key_raises_bad_output():
    with pytest.raises(BadOutput):
        FlakeMetadata.from_json(json.dumps({"url": LOCKED}))


@pytest.mark.asyncio
async def test_from_uri(fake_nix):
    flake = await Flake.from_uri("github:example/hive")
    assert flake.uri == RESOLVED
    assert flake.locked_uri == LOCKED
    assert flake.local_dir is None
    assert fake_nix.read_text().splitlines() == [
        "flake",
        "metadata",
        "--json",
        "--extra-experimental-features",
        "nix-command flakes",
        "github:example/hive",
    ]


@pytest.mark.asyncio
async def test_from_dir_keeps_directory(fake_nix, tmp_path):
    flake = await Flake.from_dir(tmp_path)
    assert flake.local_dir == tmp_path
    assert fake_nix.read_text().splitlines()[-1] == str(tmp_path)


@pytest.mark.asyncio
async def test_resolve_failure_status(fake_nix, monkeypatch):
    monkeypatch.setenv("FAKE_NIX_STATUS", "3")
    with pytest.raises(ChildFailure) as info:
        await FlakeMetadata.resolve("github:example/hive")
    assert info.value.exit_code == 3


@pytest.mark.asyncio
async def test_resolve_bad_output(fake_nix, monkeypatch):
    monkeypatch.setenv("FAKE_NIX_OUTPUT", "oops")
    with pytest.raises(BadOutput) as info:
        await FlakeMetadata.resolve("github:example/hive")
    assert info.value.output == "oops"


@pytest.mark.asyncio
async def test_missing_nix_raises_io_error(tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", str(tmp_path))
    with pytest.raises(IoError):
        await Flake.from_uri("github:example/hive")


@pytest.mark.asyncio
async def test_lock_flake_quiet(fake_nix):
    result = await lock_flake_quiet("github:example/hive")
    assert result is None
    assert fake_nix.read_text().splitlines() == [
        "flake",
        "lock",
        "--extra-experimental-features",
        "nix-command flakes",
        "github:example/hive",
    ]


@pytest.mark.asyncio
async def test_lock_flake_quiet_failure_status(fake_nix, monkeypatch):
    monkeypatch.setenv("FAKE_NIX_STATUS", "5")
    with pytest.raises(ChildFailure) as info:
        await lock_flake_quiet("github:example/hive")
    assert info.value.exit_code == 5