"""Operating system profiles.

The SDK ships for a closed set of OS families. Each profile knows the
platform-specific bits the lifecycle manager needs: launcher suffix, archive
format and whether POSIX permission bits mean anything on disk.
"""

import logging
import platform
from enum import Enum
from typing import assert_never

from pydantic import BaseModel
from pydantic import ConfigDict

from .exceptions import UnsupportedOsError

logger = logging.getLogger(__name__)


class OsFamily(str, Enum):
    LINUX = "linux"
    MAC = "mac"
    WINDOWS = "windows"


class OsProfile(BaseModel):
    """Detected operating system family and CPU architecture."""

    model_config = ConfigDict(frozen=True)

    family: OsFamily
    architecture: str

    @property
    def executable_suffix(self) -> str:
        """Suffix of the SDK launcher in `bin/`."""
        match self.family:
            case OsFamily.WINDOWS:
                return ".cmd"
            case OsFamily.LINUX | OsFamily.MAC:
                return ""
            case _:
                assert_never(self.family)

    @property
    def script_suffix(self) -> str:
        """Suffix of shell scripts shipped with the SDK (e.g. the installer)."""
        match self.family:
            case OsFamily.WINDOWS:
                return ".bat"
            case OsFamily.LINUX | OsFamily.MAC:
                return ".sh"
            case _:
                assert_never(self.family)

    @property
    def archive_extension(self) -> str:
        """Archive format the SDK is distributed in for this family."""
        match self.family:
            case OsFamily.WINDOWS:
                return "zip"
            case OsFamily.LINUX | OsFamily.MAC:
                return "tar.gz"
            case _:
                assert_never(self.family)

    @property
    def supports_posix_permissions(self) -> bool:
        return self.family is not OsFamily.WINDOWS


def _normalize_family(system: str) -> OsFamily:
    value = system.lower()
    if value.startswith("linux"):
        return OsFamily.LINUX
    if value in {"darwin", "mac", "macos"}:
        return OsFamily.MAC
    if value.startswith("windows") or value.startswith("cygwin") or value.startswith("msys"):
        return OsFamily.WINDOWS
    raise UnsupportedOsError(f"Unsupported operating system: {system}", context={"system": system})


def _normalize_architecture(machine: str) -> str:
    value = machine.lower()
    if value in {"x86_64", "amd64"}:
        return "x86_64"
    if value in {"arm64", "aarch64"}:
        return "arm"
    if value in {"i386", "i686", "x86"}:
        return "x86"
    return value


def detect_os_profile(system: str | None = None, machine: str | None = None) -> OsProfile:
    """
    Detect the profile of the running system.

    Args:
        system: Override for `platform.system()` (tests)
        machine: Override for `platform.machine()` (tests)

    Returns:
        OsProfile for this host

    Raises:
        UnsupportedOsError: If the OS family is not one the SDK ships for
    """
    system = system if system is not None else platform.system()
    machine = machine if machine is not None else platform.machine()

    profile = OsProfile(family=_normalize_family(system), architecture=_normalize_architecture(machine))
    logger.debug(f"Detected OS profile: {profile.family.value}/{profile.architecture}")
    return profile
