"""Managed SDK data model - immutable value types shared by all components.

Versions, process invocations, captured output and the SDK's own component
listing are parsed and validated here so that the rest of the package only
ever sees well-formed values.
"""

import re
from enum import Enum
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import TypeAdapter
from pydantic import field_validator

_FIXED_VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")


class Version(BaseModel):
    """
    SDK version requested by the application.

    Either a fixed release (e.g. "99.0.0") that is never updated, or the
    floating "LATEST" alias that is periodically checked for updates. The
    version string doubles as the install path segment.
    """

    model_config = ConfigDict(frozen=True)

    LATEST: ClassVar[str] = "LATEST"

    version: str

    @field_validator("version")
    @classmethod
    def _validate_version(cls, value: str) -> str:
        if value == cls.LATEST or _FIXED_VERSION_PATTERN.match(value):
            return value
        raise ValueError(f"Invalid version '{value}', expected '{cls.LATEST}' or MAJOR.MINOR.PATCH")

    @classmethod
    def latest(cls) -> "Version":
        """Floating version that tracks the newest release."""
        return cls(version=cls.LATEST)

    @property
    def is_latest(self) -> bool:
        return self.version == self.LATEST

    def __str__(self) -> str:
        return self.version


class InstallState(str, Enum):
    """On-disk state of a managed SDK relative to the requested version."""

    ABSENT = "absent"
    INSTALLED_CURRENT = "installed_current"
    # Floating version only: installed but the SDK reports pending updates.
    INSTALLED_STALE = "installed_stale"
    # Fixed version only: VERSION marker disagrees. Never repaired automatically.
    INSTALLED_MISMATCH = "installed_mismatch"


class ProcessInvocation(BaseModel):
    """A single external process run: argument vector, cwd, env overrides, timeout."""

    model_config = ConfigDict(frozen=True)

    command: tuple[str, ...] = Field(min_length=1)
    working_directory: Path | None = None
    environment: dict[str, str] = Field(default_factory=dict)
    timeout: float | None = Field(default=None, gt=0)

    @property
    def program(self) -> str:
        return self.command[0]


class CapturedOutput(BaseModel):
    """Result of one capture-mode invocation."""

    model_config = ConfigDict(frozen=True)

    exit_code: int
    stdout: str = ""
    stderr: str = ""


class SdkComponentState(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str


class SdkComponent(BaseModel):
    """
    One entry of the SDK's `components list --format=json` output.

    Only the fields the lifecycle manager needs are modelled, everything else
    in the listing is ignored.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    UPDATE_AVAILABLE: ClassVar[str] = "Update Available"

    id: str
    name: str = ""
    state: SdkComponentState | None = None
    current_version_string: str | None = None
    latest_version_string: str | None = None
    size: int | None = None

    @property
    def update_available(self) -> bool:
        return self.state is not None and self.state.name == self.UPDATE_AVAILABLE

    @classmethod
    def from_json_list(cls, text: str) -> list["SdkComponent"]:
        """
        Parse a JSON array of components.

        Args:
            text: Raw stdout of the component listing command

        Returns:
            Parsed components (empty list for blank output)

        Raises:
            pydantic.ValidationError: If the output is not a JSON list of components
        """
        if not text.strip():
            return []
        return _COMPONENT_LIST_ADAPTER.validate_json(text)


_COMPONENT_LIST_ADAPTER = TypeAdapter(list[SdkComponent])


class ManagedSdkConfig(BaseModel):
    """
    Application policy for a managed SDK (injected at construction).

    Nothing in the package keeps global state - user agent, reporting and
    environment all travel through this object.
    """

    model_config = ConfigDict(frozen=True)

    user_agent: str = "managed-sdk-python"
    usage_reporting: bool = False
    override_components: frozenset[str] | None = None
    environment: dict[str, str] = Field(default_factory=dict)

    executable_name: str = "gcloud"
    sdk_dir_name: str = "google-cloud-sdk"

    lock_timeout: float = Field(default=300.0, ge=0)
    lock_stale_after: float = Field(default=120.0, gt=0)
