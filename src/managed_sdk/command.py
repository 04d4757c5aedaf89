"""Command execution in capture and stream modes.

Capture mode buffers both streams and judges the exit code. Stream mode
forwards lines to listeners and leaves the exit code to the caller, since a
long-running install may have made meaningful progress before failing.
"""

import asyncio
import logging

from .exceptions import CommandExitError
from .process import ProcessExecutor
from .schema import CapturedOutput
from .schema import ProcessInvocation
from .streams import AccumulatingConsumer
from .streams import ForwardingConsumer
from .streams import LineListener

logger = logging.getLogger(__name__)


class CommandExecutor:
    """Run commands through a ProcessExecutor in capture or stream mode."""

    def __init__(self, process_executor: ProcessExecutor | None = None):
        self.process_executor = process_executor or ProcessExecutor()

    async def run_captured(
        self,
        invocation: ProcessInvocation,
        cancel_event: asyncio.Event | None = None,
    ) -> CapturedOutput:
        """
        Run a command buffering both streams, without judging the exit code.

        Raises:
            CommandLaunchError: If the process could not be started
            CommandExecutionError: If reading output failed
            CommandInterruptedError: If the run timed out or was cancelled
        """
        stdout_consumer = AccumulatingConsumer()
        stderr_consumer = AccumulatingConsumer()

        exit_code = await self.process_executor.run(
            invocation, stdout_consumer, stderr_consumer, cancel_event=cancel_event
        )
        return CapturedOutput(
            exit_code=exit_code,
            stdout=await stdout_consumer.get(),
            stderr=await stderr_consumer.get(),
        )

    async def capture(
        self,
        invocation: ProcessInvocation,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        """
        Run a command and return its stdout.

        Args:
            invocation: Command to run
            cancel_event: Optional event that terminates the run when set

        Returns:
            Captured stdout, verbatim (not trimmed)

        Raises:
            CommandExitError: If the command exited non-zero (carries stderr)
            CommandLaunchError: If the process could not be started
            CommandExecutionError: If reading output failed
            CommandInterruptedError: If the run timed out or was cancelled

        Example:
            >>> executor = CommandExecutor()
            >>> out = await executor.capture(ProcessInvocation(command=("gcloud", "version")))
        """
        output = await self.run_captured(invocation, cancel_event=cancel_event)
        if output.exit_code != 0:
            # stderr is only worth logging when the command failed
            logger.error(output.stderr)
            raise CommandExitError(
                f"Process exited with non-zero exit code: {output.exit_code}",
                exit_code=output.exit_code,
                stderr=output.stderr,
                context={"command": list(invocation.command)},
            )
        return output.stdout

    async def stream(
        self,
        invocation: ProcessInvocation,
        out_listener: LineListener,
        err_listener: LineListener,
        cancel_event: asyncio.Event | None = None,
    ) -> int:
        """
        Run a command forwarding output lines to listeners as they arrive.

        Args:
            invocation: Command to run
            out_listener: Called once per stdout line, in order
            err_listener: Called once per stderr line, in order
            cancel_event: Optional event that terminates the run when set

        Returns:
            Exit code, not judged

        Raises:
            CommandLaunchError: If the process could not be started
            CommandExecutionError: If reading output (or a listener) failed
            CommandInterruptedError: If the run timed out or was cancelled
        """
        return await self.process_executor.run(
            invocation,
            ForwardingConsumer(out_listener),
            ForwardingConsumer(err_listener),
            cancel_event=cancel_event,
        )
