"""Managed SDK lifecycle - state checks, install and update.

ManagedSdk reconciles what is on disk with the version the application asked
for. Reads (is it installed, is it current) never mutate anything. Mutations
(install, update, component install) run under the InstallLock of the version
directory so at most one of them touches an install at a time.

Layout:
    managed_root/<version>/<sdk_dir_name>/bin/<executable><suffix>
    managed_root/<version>/<sdk_dir_name>/VERSION
    managed_root/.<version>.install.lock      (while an install/update runs)
    managed_root/.<version>.download-*/       (while an archive is downloaded)

The version directory is the extraction root, so the lock file and download
area sit beside it where no archive entry can reach them.
"""

import asyncio
import logging
import tempfile
from pathlib import Path

from pydantic import ValidationError

from .command import CommandExecutor
from .exceptions import CommandExecutionError
from .exceptions import CommandExitError
from .exceptions import CommandLaunchError
from .exceptions import ManagedSdkError
from .exceptions import SdkInstallError
from .exceptions import SdkUpdateError
from .exceptions import SdkVerificationError
from .exceptions import SdkVersionMismatchError
from .exceptions import UnsupportedOperationError
from .extract import extractor_for
from .lock import InstallLock
from .os_profile import OsProfile
from .os_profile import detect_os_profile
from .protocols import SdkDownloaderProtocol
from .resolver import resolve_managed_sdk_root
from .schema import InstallState
from .schema import ManagedSdkConfig
from .schema import ProcessInvocation
from .schema import SdkComponent
from .schema import Version
from .streams import LineListener

logger = logging.getLogger(__name__)


def _log_line(line: str) -> None:
    logger.debug(line)


class ManagedSdk:
    """
    A versioned, locally cached SDK install (with injected root and policy).

    Fixed versions are installed once and never updated. The floating LATEST
    version can be checked with `is_up_to_date()` and refreshed with `update()`.

    Example:
        >>> sdk = ManagedSdk.new_managed_sdk(Version(version="99.0.0"))
        >>> if not sdk.is_installed():
        ...     await sdk.install(downloader)
        >>> sdk.executable_path
        PosixPath('/home/me/.cache/managed-sdk/managed-cloud-sdk/99.0.0/google-cloud-sdk/bin/gcloud')
    """

    def __init__(
        self,
        version: Version,
        managed_root: Path,
        os_profile: OsProfile,
        config: ManagedSdkConfig | None = None,
        command_executor: CommandExecutor | None = None,
    ):
        """Initialize with app-provided root and policy.

        Args:
            version: Requested version (fixed or LATEST)
            managed_root: Directory holding all managed versions
            os_profile: Profile of the host OS
            config: Application policy (user agent, env, lock timings)
            command_executor: Executor for SDK subcommands (injectable for tests)
        """
        self.version = version
        self.managed_root = managed_root
        self.os_profile = os_profile
        self.config = config or ManagedSdkConfig()
        self.command_executor = command_executor or CommandExecutor()

    @classmethod
    def new_managed_sdk(
        cls,
        version: Version | None = None,
        config: ManagedSdkConfig | None = None,
        managed_root: Path | None = None,
    ) -> "ManagedSdk":
        """
        Create a managed SDK for this host.

        Args:
            version: Requested version (defaults to LATEST)
            config: Application policy
            managed_root: Override for the OS-specific default root

        Raises:
            UnsupportedOsError: If this host's OS is not supported
        """
        profile = detect_os_profile()
        root = managed_root if managed_root is not None else resolve_managed_sdk_root(profile)
        return cls(version or Version.latest(), root, profile, config=config)

    @property
    def version_directory(self) -> Path:
        return self.managed_root / self.version.version

    @property
    def sdk_home(self) -> Path:
        return self.version_directory / self.config.sdk_dir_name

    @property
    def executable_path(self) -> Path:
        """Path to the SDK launcher (operating system specific)."""
        return self.sdk_home / "bin" / f"{self.config.executable_name}{self.os_profile.executable_suffix}"

    @property
    def version_file(self) -> Path:
        return self.sdk_home / "VERSION"

    # State queries

    def verify_installation(self) -> InstallState:
        """
        Check the on-disk install against the requested version.

        Returns:
            ABSENT if the home directory or launcher is missing,
            INSTALLED_CURRENT otherwise (staleness is not checked here)

        Raises:
            SdkVersionMismatchError: Fixed version whose VERSION marker disagrees
            SdkVerificationError: Fixed version whose VERSION marker is unreadable
        """
        if not self.sdk_home.is_dir():
            return InstallState.ABSENT
        if not self.executable_path.is_file():
            return InstallState.ABSENT

        if not self.version.is_latest:
            try:
                installed = self.version_file.read_text(encoding="utf-8").strip()
            except OSError as e:
                raise SdkVerificationError(
                    f"Cannot read version marker {self.version_file}: {e}",
                    context={"version_file": str(self.version_file)},
                ) from e
            if installed != self.version.version:
                raise SdkVersionMismatchError(
                    f"Installed sdk version: {installed} does not match expected version: {self.version}.",
                    context={
                        "state": InstallState.INSTALLED_MISMATCH,
                        "installed": installed,
                        "requested": self.version.version,
                        "sdk_home": str(self.sdk_home),
                    },
                )
        return InstallState.INSTALLED_CURRENT

    def is_installed(self) -> bool:
        """Simple check that the launcher exists (and the version matches, if fixed)."""
        return self.verify_installation() is not InstallState.ABSENT

    async def is_up_to_date(self) -> bool:
        """
        Ask the SDK whether any installed component has an update available.

        The SDK contacts its release server for this. Fixed versions are always
        up to date; a missing launcher is not.

        Raises:
            SdkVerificationError: If the listing command failed or its output is invalid
            CommandInterruptedError: If the listing command timed out or was cancelled
        """
        if not self.executable_path.is_file():
            return False
        if not self.version.is_latest:
            return True

        components = await self._list_components("--filter=state.name:Update Available")
        return not any(component.update_available for component in components)

    async def get_state(self) -> InstallState:
        """Full state: on-disk verification plus, for LATEST, the update check."""
        state = self.verify_installation()
        if state is InstallState.ABSENT or not self.version.is_latest:
            return state
        return InstallState.INSTALLED_CURRENT if await self.is_up_to_date() else InstallState.INSTALLED_STALE

    async def has_component(self, component_id: str) -> bool:
        """
        Check whether a component is installed, using local state only (no network).

        Raises:
            SdkVerificationError: If the id matches several components or the listing failed
        """
        if not self.executable_path.is_file():
            return False
        components = await self._list_components("--only-local-state", f"--filter=id:{component_id}")
        if len(components) > 1:
            raise SdkVerificationError(
                f"Invalid component {component_id}", context={"matches": [c.id for c in components]}
            )
        return bool(components)

    # Mutations

    async def install(self, downloader: SdkDownloaderProtocol, listener: LineListener | None = None) -> Path:
        """
        Install the SDK if it is not already installed.

        Process (under the install lock):
        1. No-op if the requested version is already installed
        2. Download the archive into a temporary directory
        3. Extract it into the version directory
        4. Run the bundled installer script, if the SDK ships one
        5. Verify the result

        Args:
            downloader: Source of the SDK archive
            listener: Receives extraction progress and installer output lines.
                Extraction runs in a worker thread, so the listener must be thread-safe.

        Returns:
            The SDK home directory

        Raises:
            SdkInstallError: If any install step failed
            SdkVersionMismatchError: If a different fixed version is on disk
            PathTraversalError: If the archive contains entries escaping the destination
            LockContentionError: If another install/update holds the lock
        """
        listener = listener or _log_line

        async with self._install_lock():
            if self.verify_installation() is InstallState.INSTALLED_CURRENT:
                logger.info(f"SDK {self.version} already installed at {self.sdk_home}")
                return self.sdk_home

            logger.info(f"Installing SDK {self.version} to {self.version_directory}")
            try:
                with tempfile.TemporaryDirectory(prefix=f".{self.version}.download-", dir=self.managed_root) as download_dir:
                    archive = Path(download_dir) / f"{self.config.sdk_dir_name}.{self.os_profile.archive_extension}"
                    await downloader.download_to(archive)
                    logger.debug(f"Downloaded SDK archive to {archive}")
                    await self._extract(archive, listener)

                await self._run_bootstrap(listener)
            except ManagedSdkError:
                raise
            except Exception as e:
                raise SdkInstallError(f"Failed to install SDK {self.version}: {e}") from e

            if self.verify_installation() is InstallState.ABSENT:
                raise SdkInstallError(
                    f"SDK launcher missing after install: {self.executable_path}",
                    context={"sdk_home": str(self.sdk_home)},
                )

        logger.info(f"Successfully installed SDK {self.version}")
        return self.sdk_home

    async def update(self, listener: LineListener | None = None) -> None:
        """
        Update a LATEST install in place.

        Raises:
            UnsupportedOperationError: For fixed versions (no lock taken, no filesystem access)
            SdkUpdateError: If the SDK is not installed or the update command failed
            LockContentionError: If another install/update holds the lock
        """
        if not self.version.is_latest:
            raise UnsupportedOperationError(
                "Cannot update a fixed version SDK.", context={"version": self.version.version}
            )

        async with self._install_lock():
            if self.verify_installation() is InstallState.ABSENT:
                raise SdkUpdateError(f"SDK is not installed at {self.sdk_home}")

            logger.info(f"Updating SDK at {self.sdk_home}")
            exit_code = await self._stream(("components", "update", "--quiet"), listener)
            if exit_code != 0:
                raise SdkUpdateError(
                    f"SDK update exited with non-zero exit code: {exit_code}", context={"exit_code": exit_code}
                )
        logger.info("Successfully updated SDK")

    async def install_component(self, component_id: str, listener: LineListener | None = None) -> None:
        """
        Install an SDK component (e.g. "app-engine-java").

        Raises:
            SdkInstallError: If the SDK is not installed or the command failed
            LockContentionError: If another install/update holds the lock
        """
        async with self._install_lock():
            if self.verify_installation() is InstallState.ABSENT:
                raise SdkInstallError(f"SDK is not installed at {self.sdk_home}")

            logger.info(f"Installing SDK component {component_id}")
            exit_code = await self._stream(("components", "install", component_id, "--quiet"), listener)
            if exit_code != 0:
                raise SdkInstallError(
                    f"Installing component {component_id} exited with non-zero exit code: {exit_code}",
                    context={"component": component_id, "exit_code": exit_code},
                )

    # Helpers

    def _install_lock(self) -> InstallLock:
        return InstallLock(
            self.managed_root,
            timeout=self.config.lock_timeout,
            stale_after=self.config.lock_stale_after,
            name=f".{self.version}.install.lock",
        )

    def _sdk_environment(self) -> dict[str, str]:
        return {
            "CLOUDSDK_CORE_DISABLE_PROMPTS": "1",
            "CLOUDSDK_METRICS_ENVIRONMENT": self.config.user_agent,
            **self.config.environment,
        }

    def _invocation(self, command: tuple[str, ...]) -> ProcessInvocation:
        return ProcessInvocation(command=command, environment=self._sdk_environment())

    async def _list_components(self, *filters: str) -> list[SdkComponent]:
        invocation = self._invocation(
            (str(self.executable_path), "components", "list", "--format=json", *filters)
        )
        try:
            output = await self.command_executor.capture(invocation)
            return SdkComponent.from_json_list(output)
        except (CommandExitError, CommandExecutionError, CommandLaunchError) as e:
            raise SdkVerificationError(f"Failed to list SDK components: {e}", context=e.context) from e
        except ValidationError as e:
            raise SdkVerificationError(f"Invalid component listing from SDK: {e}") from e

    async def _stream(self, arguments: tuple[str, ...], listener: LineListener | None) -> int:
        listener = listener or _log_line
        invocation = self._invocation((str(self.executable_path), *arguments))
        return await self.command_executor.stream(invocation, listener, listener)

    async def _extract(self, archive: Path, listener: LineListener) -> None:
        extractor = extractor_for(archive, apply_permissions=self.os_profile.supports_posix_permissions)
        extraction = asyncio.ensure_future(
            asyncio.to_thread(extractor.extract, archive, self.version_directory, listener)
        )
        try:
            await asyncio.shield(extraction)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; hold the lock until it stops writing
            await asyncio.wait({extraction})
            raise

    async def _run_bootstrap(self, listener: LineListener) -> None:
        script = self.sdk_home / f"install{self.os_profile.script_suffix}"
        if not script.is_file():
            logger.debug(f"No installer script at {script}, skipping bootstrap")
            return

        command = [
            str(script),
            "--path-update=false",
            "--command-completion=false",
            "--quiet",
            f"--usage-reporting={str(self.config.usage_reporting).lower()}",
        ]
        if self.config.override_components:
            command += ["--override-components", *sorted(self.config.override_components)]

        logger.debug(f"Running SDK installer script {script}")
        exit_code = await self.command_executor.stream(
            ProcessInvocation(command=tuple(command), working_directory=self.sdk_home, environment=self._sdk_environment()),
            listener,
            listener,
        )
        if exit_code != 0:
            raise SdkInstallError(
                f"SDK installer script exited with non-zero exit code: {exit_code}",
                context={"script": str(script), "exit_code": exit_code},
            )
