"""Protocols for collaborators the managed SDK depends on.

The library does not know how SDK archives are fetched. Apps provide any
implementation of SdkDownloaderProtocol (HTTP client, mirror, local file).
"""

from pathlib import Path
from typing import Protocol


class SdkDownloaderProtocol(Protocol):
    """Protocol for SDK archive download sources.

    Example implementations:
    - HttpDownloader: fetches the release archive for a version and OS
    - FileDownloader: copies a pre-fetched archive (offline installs, tests)
    """

    async def download_to(self, target_file: Path) -> None:
        """Write the complete SDK archive to target_file.

        The file name carries the archive format the installer expects
        (e.g. "google-cloud-sdk.tar.gz" or "google-cloud-sdk.zip").

        Args:
            target_file: File to create; its parent directory exists

        Raises:
            Exception: If the download fails
        """
        ...
