"""Tests for managed SDK root resolution with injected environment."""

from pathlib import Path

from managed_sdk import OsFamily
from managed_sdk import OsProfile
from managed_sdk import resolve_managed_sdk_root

LINUX = OsProfile(family=OsFamily.LINUX, architecture="x86_64")
MAC = OsProfile(family=OsFamily.MAC, architecture="arm")
WINDOWS = OsProfile(family=OsFamily.WINDOWS, architecture="x86_64")


def test_linux_default(tmp_path):
    """Test Linux uses ~/.cache."""
    root = resolve_managed_sdk_root(LINUX, environ={"HOME": str(tmp_path)})

    assert root == tmp_path / ".cache" / "managed-sdk" / "managed-cloud-sdk"


def test_linux_xdg_cache_home(tmp_path):
    """Test Linux honors an existing XDG_CACHE_HOME."""
    cache = tmp_path / "xdg"
    cache.mkdir()

    root = resolve_managed_sdk_root(LINUX, environ={"HOME": str(tmp_path), "XDG_CACHE_HOME": str(cache)})

    assert root == cache / "managed-sdk" / "managed-cloud-sdk"


def test_linux_missing_xdg_cache_home_falls_back(tmp_path):
    """Test a non-existent XDG_CACHE_HOME falls back to ~/.cache."""
    root = resolve_managed_sdk_root(
        LINUX, environ={"HOME": str(tmp_path), "XDG_CACHE_HOME": str(tmp_path / "missing")}
    )

    assert root == tmp_path / ".cache" / "managed-sdk" / "managed-cloud-sdk"


def test_mac_application_support(tmp_path):
    """Test Mac uses Application Support when it exists."""
    application_support = tmp_path / "Library" / "Application Support"
    application_support.mkdir(parents=True)

    root = resolve_managed_sdk_root(MAC, environ={"HOME": str(tmp_path)})

    assert root == application_support / "managed-sdk" / "managed-cloud-sdk"


def test_mac_without_application_support(tmp_path):
    """Test Mac falls back to the cache path."""
    root = resolve_managed_sdk_root(MAC, environ={"HOME": str(tmp_path)})

    assert root == tmp_path / ".cache" / "managed-sdk" / "managed-cloud-sdk"


def test_windows_local_app_data(tmp_path):
    """Test Windows uses LOCALAPPDATA with the short path."""
    local_app_data = tmp_path / "AppData" / "Local"
    local_app_data.mkdir(parents=True)

    root = resolve_managed_sdk_root(
        WINDOWS, environ={"USERPROFILE": str(tmp_path), "LOCALAPPDATA": str(local_app_data)}
    )

    assert root == local_app_data / "managed-sdk" / "cloud-sdk"


def test_windows_missing_local_app_data(tmp_path):
    """Test Windows falls back when LOCALAPPDATA is unset."""
    root = resolve_managed_sdk_root(WINDOWS, environ={"USERPROFILE": str(tmp_path)})

    assert root == tmp_path / ".cache" / "managed-sdk" / "cloud-sdk"


def test_windows_nonexistent_local_app_data(tmp_path):
    """Test Windows falls back when LOCALAPPDATA points nowhere."""
    root = resolve_managed_sdk_root(
        WINDOWS, environ={"USERPROFILE": str(tmp_path), "LOCALAPPDATA": str(tmp_path / "nope")}
    )

    assert root == tmp_path / ".cache" / "managed-sdk" / "cloud-sdk"


def test_home_falls_back_to_path_home():
    """Test missing HOME uses Path.home()."""
    root = resolve_managed_sdk_root(LINUX, environ={})

    assert root == Path.home() / ".cache" / "managed-sdk" / "managed-cloud-sdk"
