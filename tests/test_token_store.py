"""
Unit tests for durable token storage (`watts_home.api_auth.token_store`).
"""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path

import pytest

from watts_home import config as config_mod
from watts_home.api_auth.models import StoredTokens
from watts_home.api_auth.token_store import TokenStore
from watts_home.errors import TokenStoreError

TOKENS = StoredTokens(
    access_token="ACCESS",
    refresh_token="REFRESH",
    expires_at=1_700_000_900,
    refresh_token_expires_at=1_707_776_000,
)


def test_load_returns_none_when_file_missing(tmp_path: Path) -> None:
    assert TokenStore(tmp_path / "nonexistent.json").load_sync() is None


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    store = TokenStore(tmp_path / "store" / "tokens.json")
    store.save_sync(TOKENS)

    assert store.load_sync() == TOKENS
    data = json.loads(store.path.read_text(encoding="utf-8"))
    assert set(data) == {"access_token", "refresh_token", "expires_at", "refresh_token_expires_at"}


@pytest.mark.skipif(os.name != "posix", reason="POSIX permission bits")
def test_save_uses_owner_only_permissions(tmp_path: Path) -> None:
    store = TokenStore(tmp_path / "store" / "tokens.json")
    store.save_sync(TOKENS)

    assert stat.S_IMODE(store.path.stat().st_mode) == 0o600
    assert stat.S_IMODE(store.path.parent.stat().st_mode) == 0o700


@pytest.mark.skipif(os.name != "posix", reason="POSIX permission bits")
def test_save_leaves_existing_directory_mode_alone(tmp_path: Path) -> None:
    shared = tmp_path / "shared"
    shared.mkdir()
    shared.chmod(0o755)

    store = TokenStore(shared / "tokens.json")
    store.save_sync(TOKENS)

    assert stat.S_IMODE(shared.stat().st_mode) == 0o755
    assert stat.S_IMODE(store.path.stat().st_mode) == 0o600


@pytest.mark.skipif(os.name != "posix", reason="POSIX permission bits")
def test_save_creates_missing_directories_owner_only(tmp_path: Path) -> None:
    store = TokenStore(tmp_path / "a" / "b" / "tokens.json")
    store.save_sync(TOKENS)

    assert stat.S_IMODE((tmp_path / "a").stat().st_mode) == 0o700
    assert stat.S_IMODE((tmp_path / "a" / "b").stat().st_mode) == 0o700


def test_unwritable_location_raises_token_store_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    with pytest.raises(TokenStoreError) as exc:
        TokenStore(blocker / "tokens.json").save_sync(TOKENS)

    assert str(blocker) in str(exc.value)
    assert isinstance(exc.value.__cause__, OSError)


def test_save_replaces_atomically_and_leaves_no_temp_files(tmp_path: Path) -> None:
    store = TokenStore(tmp_path / "tokens.json")
    store.save_sync(TOKENS)
    newer = StoredTokens("A2", "R2", TOKENS.expires_at + 60, TOKENS.refresh_token_expires_at)
    store.save_sync(newer)

    assert store.load_sync() == newer
    assert [p.name for p in tmp_path.iterdir()] == ["tokens.json"]


def test_failed_write_keeps_previous_record(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = TokenStore(tmp_path / "tokens.json")
    store.save_sync(TOKENS)

    def _boom(src, dst):  # type: ignore[no-untyped-def]
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", _boom)
    with pytest.raises(TokenStoreError):
        store.save_sync(StoredTokens("A2", "R2", 1, 2))

    assert store.load_sync() == TOKENS
    assert [p.name for p in tmp_path.iterdir()] == ["tokens.json"]


@pytest.mark.parametrize(
    "content",
    [
        "not json {",
        "[]",
        json.dumps({"access_token": "A"}),
        json.dumps({"access_token": "A", "refresh_token": "R", "expires_at": "soon"}),
    ],
)
def test_invalid_record_is_treated_as_absent(tmp_path: Path, content: str) -> None:
    path = tmp_path / "tokens.json"
    path.write_text(content, encoding="utf-8")

    assert TokenStore(path).load_sync() is None


def test_clear_removes_record(tmp_path: Path) -> None:
    store = TokenStore(tmp_path / "tokens.json")
    store.save_sync(TOKENS)

    assert store.clear_sync() is True
    assert store.clear_sync() is False
    assert store.load_sync() is None


def test_for_storage_dir_nests_under_plugin_name(tmp_path: Path) -> None:
    store = TokenStore.for_storage_dir(tmp_path)
    assert store.path == tmp_path / config_mod.PLUGIN_NAME / "tokens.json"


def test_default_path_honours_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WATTS_TOKEN_PATH", str(tmp_path / "custom.json"))
    assert TokenStore().path == tmp_path / "custom.json"


@pytest.mark.asyncio
async def test_async_wrappers(tmp_path: Path) -> None:
    store = TokenStore(tmp_path / "tokens.json")
    await store.save(TOKENS)

    assert await store.load() == TOKENS
    assert await store.clear() is True
