"""External process execution with deadlock-safe output capture.

Both output streams are handed to their consumers before the executor waits
for the process. A child that fills the OS pipe buffer of a stream nobody
reads would otherwise block forever. Three tasks run concurrently (stdout
drain, stderr drain, process wait) and meet at a single join point.
"""

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Mapping

from .exceptions import CommandCancelledError
from .exceptions import CommandExecutionError
from .exceptions import CommandLaunchError
from .exceptions import CommandTimeoutError
from .schema import ProcessInvocation
from .streams import StreamConsumer
from .streams import StreamHandle

logger = logging.getLogger(__name__)

_IS_WINDOWS = sys.platform == "win32"


def merge_environment(overrides: Mapping[str, str], base: Mapping[str, str] | None = None) -> dict[str, str]:
    """
    Layer environment overrides on top of the inherited environment.

    Merge semantics: start from a copy of `base` (os.environ by default), then
    every override key replaces the inherited value. Variables cannot be
    removed through overrides.

    Args:
        overrides: Variables to set for the child
        base: Inherited environment (defaults to os.environ)

    Returns:
        New environment mapping for the child process
    """
    environment = dict(os.environ if base is None else base)
    environment.update(overrides)
    return environment


def _new_process_group_kwargs() -> dict:
    # Own process group so termination reaches the whole tree
    if _IS_WINDOWS:
        return {"creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)}
    return {"start_new_session": True}


def _retrieve_result(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


class ProcessExecutor:
    """Run one external process with both output streams drained concurrently."""

    def __init__(self, termination_grace: float = 5.0):
        """Initialize executor.

        Args:
            termination_grace: Seconds between the polite termination signal and
                the forced kill, also the time drains get to reach end-of-stream
        """
        self.termination_grace = termination_grace

    async def run(
        self,
        invocation: ProcessInvocation,
        stdout_consumer: StreamConsumer,
        stderr_consumer: StreamConsumer,
        cancel_event: asyncio.Event | None = None,
    ) -> int:
        """
        Run a process to completion.

        A non-zero exit code is not an error at this layer, it is returned for
        the caller to interpret.

        Args:
            invocation: Command, working directory, env overrides and timeout
            stdout_consumer: Consumer draining standard output
            stderr_consumer: Consumer draining standard error
            cancel_event: Optional event; setting it terminates the process

        Returns:
            Process exit code

        Raises:
            CommandLaunchError: If the process could not be started
            CommandExecutionError: If draining an output stream failed
            CommandTimeoutError: If the invocation timeout elapsed
            CommandCancelledError: If cancel_event was set
        """
        logger.debug(f"Running command: {list(invocation.command)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *invocation.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=invocation.working_directory,
                env=merge_environment(invocation.environment),
                **_new_process_group_kwargs(),
            )
        except OSError as e:
            raise CommandLaunchError(
                f"Failed to launch {invocation.program}: {e}",
                context={"command": list(invocation.command)},
            ) from e

        assert process.stdout is not None and process.stderr is not None
        handles = (stdout_consumer.consume(process.stdout), stderr_consumer.consume(process.stderr))

        completion = asyncio.gather(handles[0].get(), handles[1].get(), process.wait())
        completion.add_done_callback(_retrieve_result)

        waiters: set[asyncio.Future] = {completion}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(waiters, timeout=invocation.timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            logger.debug(f"Run of {invocation.program} cancelled, terminating process tree")
            await self._terminate(process, handles)
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if completion in done:
            try:
                _, _, exit_code = completion.result()
            except Exception as e:
                await self._terminate(process, handles)
                raise CommandExecutionError(
                    f"Failed reading output of {invocation.program}: {e}",
                    context={"command": list(invocation.command)},
                ) from e
            logger.debug(f"{invocation.program} exited with code {exit_code}")
            return exit_code

        await self._terminate(process, handles)
        if cancel_waiter is not None and cancel_waiter in done:
            raise CommandCancelledError(
                f"Command cancelled: {invocation.program}",
                context={"command": list(invocation.command)},
            )
        raise CommandTimeoutError(
            f"Command timed out after {invocation.timeout}s: {invocation.program}",
            context={"command": list(invocation.command), "timeout": invocation.timeout},
        )

    async def _terminate(self, process: asyncio.subprocess.Process, handles: tuple[StreamHandle, ...]) -> None:
        """Terminate the process tree, then let the drains see end-of-stream."""
        if process.returncode is None:
            self._signal_tree(process, force=False)
            try:
                await asyncio.wait_for(process.wait(), self.termination_grace)
            except TimeoutError:
                logger.debug(f"Process {process.pid} ignored termination, killing")
                self._signal_tree(process, force=True)
                await process.wait()
        elif not _IS_WINDOWS:
            # Leader is gone but children may still hold the pipes
            self._signal_tree(process, force=True)

        for handle in handles:
            await handle.settle(self.termination_grace)

    def _signal_tree(self, process: asyncio.subprocess.Process, force: bool) -> None:
        try:
            if _IS_WINDOWS:
                if force:
                    process.kill()
                else:
                    process.terminate()
            else:
                os.killpg(process.pid, signal.SIGKILL if force else signal.SIGTERM)
        except ProcessLookupError:
            pass
