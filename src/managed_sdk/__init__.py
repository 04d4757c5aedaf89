"""managed-sdk - Local lifecycle management for an externally distributed SDK.

Locate, verify, install and update a versioned SDK, and run its subcommands
with deadlock-safe output capture.

This is library mechanism: apps inject policy (install root, downloader,
user agent, environment) through constructors, nothing is global.
"""

from .command import CommandExecutor
from .exceptions import CommandCancelledError
from .exceptions import CommandExecutionError
from .exceptions import CommandExitError
from .exceptions import CommandInterruptedError
from .exceptions import CommandLaunchError
from .exceptions import CommandTimeoutError
from .exceptions import ExtractionError
from .exceptions import LockContentionError
from .exceptions import ManagedSdkError
from .exceptions import PathTraversalError
from .exceptions import SdkInstallError
from .exceptions import SdkUpdateError
from .exceptions import SdkVerificationError
from .exceptions import SdkVersionMismatchError
from .exceptions import StaleLockError
from .exceptions import UnsupportedOperationError
from .exceptions import UnsupportedOsError
from .extract import ExtractorProvider
from .extract import TarGzExtractorProvider
from .extract import ZipExtractorProvider
from .extract import extractor_for
from .installer import ManagedSdk
from .lock import InstallLock
from .lock import LockOwner
from .os_profile import OsFamily
from .os_profile import OsProfile
from .os_profile import detect_os_profile
from .process import ProcessExecutor
from .protocols import SdkDownloaderProtocol
from .resolver import resolve_managed_sdk_root
from .schema import CapturedOutput
from .schema import InstallState
from .schema import ManagedSdkConfig
from .schema import ProcessInvocation
from .schema import SdkComponent
from .schema import Version
from .streams import AccumulatingConsumer
from .streams import ForwardingConsumer
from .streams import StreamConsumer

__all__ = [
    # Lifecycle
    "ManagedSdk",
    "ManagedSdkConfig",
    "Version",
    "InstallState",
    "SdkComponent",
    "SdkDownloaderProtocol",
    # Platform
    "OsFamily",
    "OsProfile",
    "detect_os_profile",
    "resolve_managed_sdk_root",
    # Process execution
    "ProcessInvocation",
    "CapturedOutput",
    "ProcessExecutor",
    "CommandExecutor",
    "StreamConsumer",
    "AccumulatingConsumer",
    "ForwardingConsumer",
    # Extraction
    "ExtractorProvider",
    "TarGzExtractorProvider",
    "ZipExtractorProvider",
    "extractor_for",
    # Locking
    "InstallLock",
    "LockOwner",
    # Exceptions
    "ManagedSdkError",
    "UnsupportedOsError",
    "UnsupportedOperationError",
    "CommandLaunchError",
    "CommandExecutionError",
    "CommandExitError",
    "CommandInterruptedError",
    "CommandTimeoutError",
    "CommandCancelledError",
    "ExtractionError",
    "PathTraversalError",
    "SdkVerificationError",
    "SdkVersionMismatchError",
    "SdkInstallError",
    "SdkUpdateError",
    "LockContentionError",
    "StaleLockError",
]

__version__ = "0.1.0"
