"""Managed SDK root resolution - where versioned SDK installs live on disk.

The environment is read once, here, and only when the application does not
inject a root of its own. Each OS family has its own default location with a
home-relative cache path as fallback when the preferred directory is missing.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import assert_never

from .os_profile import OsFamily
from .os_profile import OsProfile

logger = logging.getLogger(__name__)

MANAGED_SDK_PARTIAL_PATH = Path("managed-sdk", "managed-cloud-sdk")
# Shorter path to stay clear of the Windows path length limit
WINDOWS_MANAGED_SDK_PARTIAL_PATH = Path("managed-sdk", "cloud-sdk")


def _home_directory(profile: OsProfile, environ: Mapping[str, str]) -> Path:
    candidates = ["USERPROFILE", "HOME"] if profile.family is OsFamily.WINDOWS else ["HOME"]
    for name in candidates:
        value = environ.get(name, "").strip()
        if value:
            return Path(value)
    return Path.home()


def _cache_directory(home: Path, environ: Mapping[str, str]) -> Path:
    xdg_cache = environ.get("XDG_CACHE_HOME", "").strip()
    if xdg_cache:
        xdg_path = Path(xdg_cache)
        if xdg_path.is_dir():
            return xdg_path
        logger.warning(f"XDG_CACHE_HOME={xdg_cache} does not exist, using {home / '.cache'}")
    return home / ".cache"


def resolve_managed_sdk_root(profile: OsProfile, environ: Mapping[str, str] | None = None) -> Path:
    """
    Resolve the OS-specific directory holding all managed SDK versions.

    Resolution per family:
    - Linux: $XDG_CACHE_HOME (if it exists) or ~/.cache
    - Mac: ~/Library/Application Support (if it exists), else the Linux path
    - Windows: %LOCALAPPDATA% (if set and existing), else ~/.cache

    Args:
        profile: Detected OS profile
        environ: Environment to consult (defaults to os.environ)

    Returns:
        Root directory; versions are installed beneath it

    Example:
        >>> profile = detect_os_profile()
        >>> resolve_managed_sdk_root(profile)
        PosixPath('/home/me/.cache/managed-sdk/managed-cloud-sdk')
    """
    environ = os.environ if environ is None else environ
    home = _home_directory(profile, environ)

    match profile.family:
        case OsFamily.LINUX:
            root = _cache_directory(home, environ) / MANAGED_SDK_PARTIAL_PATH

        case OsFamily.MAC:
            application_support = home / "Library" / "Application Support"
            if application_support.is_dir():
                root = application_support / MANAGED_SDK_PARTIAL_PATH
            else:
                logger.warning(f"{application_support} does not exist")
                root = _cache_directory(home, environ) / MANAGED_SDK_PARTIAL_PATH

        case OsFamily.WINDOWS:
            fallback = home / ".cache" / WINDOWS_MANAGED_SDK_PARTIAL_PATH
            local_app_data = environ.get("LOCALAPPDATA", "").strip()
            if not local_app_data:
                logger.warning("LOCALAPPDATA environment is invalid or missing")
                root = fallback
            elif not Path(local_app_data).is_dir():
                logger.warning(f"{local_app_data} does not exist")
                root = fallback
            else:
                root = Path(local_app_data) / WINDOWS_MANAGED_SDK_PARTIAL_PATH

        case _:
            assert_never(profile.family)

    logger.debug(f"Managed SDK root: {root}")
    return root
