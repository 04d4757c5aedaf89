"""Asynchronous output stream consumers.

A consumer drains one process output stream in a background task that is
scheduled the moment `consume()` is called. Two policies exist:

- AccumulatingConsumer buffers everything and hands back the full text.
- ForwardingConsumer splits the stream into lines and calls a listener for
  each one, in order, as they arrive.

The only join point is `StreamHandle.get()`. In-flight buffers are never
exposed, and a stream that faults mid-read raises from `get()`.
"""

import asyncio
import codecs
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

LineListener = Callable[[str], None]

_CHUNK_SIZE = 64 * 1024
_ENCODING = "utf-8"


class StreamHandle:
    """Handle on a running drain task."""

    def __init__(self, task: "asyncio.Task[str]"):
        self._task = task

    async def get(self) -> str:
        """Wait for end-of-stream and return the accumulated text.

        Returns:
            Accumulated text (always "" for forwarding consumers)

        Raises:
            Exception: Whatever fault interrupted the drain
        """
        return await self._task

    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        self._task.cancel()

    async def settle(self, timeout: float) -> None:
        """Let a drain run out after its process was terminated.

        Closed pipes read as end-of-stream. Faults seen here are part of the
        shutdown rather than I/O failures, so they are logged and dropped. A
        drain still running after `timeout` (pipe inherited by an orphaned
        grandchild) is cancelled.
        """
        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        if not done:
            self.cancel()
            await asyncio.wait({self._task})
        if not self._task.cancelled() and self._task.exception() is not None:
            logger.debug(f"Stream closed during termination: {self._task.exception()!r}")


class StreamConsumer:
    """Base class for stream consumers. Subclasses implement `_drain`.

    A consumer drains a single stream; the handle of that drain stays
    available as `handle` for retrieving the result later.
    """

    def __init__(self) -> None:
        self.handle: StreamHandle | None = None

    def consume(self, stream: asyncio.StreamReader) -> StreamHandle:
        """Start draining `stream` in the background.

        Args:
            stream: Process output stream

        Returns:
            Handle whose `get()` completes at end-of-stream

        Raises:
            RuntimeError: If this consumer is already draining a stream
        """
        if self.handle is not None:
            raise RuntimeError(f"{type(self).__name__} already consumed a stream")
        task = asyncio.get_running_loop().create_task(self._drain(stream))
        self.handle = StreamHandle(task)
        return self.handle

    async def get(self) -> str:
        """Result of the drain started by `consume()`."""
        if self.handle is None:
            raise RuntimeError(f"{type(self).__name__} has not consumed a stream")
        return await self.handle.get()

    async def _drain(self, stream: asyncio.StreamReader) -> str:
        raise NotImplementedError


class AccumulatingConsumer(StreamConsumer):
    """Buffer the entire stream and return it as text."""

    async def _drain(self, stream: asyncio.StreamReader) -> str:
        chunks: list[bytes] = []
        while True:
            chunk = await stream.read(_CHUNK_SIZE)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks).decode(_ENCODING, errors="replace")


class ForwardingConsumer(StreamConsumer):
    """Forward the stream line by line to a listener.

    Line terminators ("\\n" or "\\r\\n") are stripped. A trailing line without
    a terminator is delivered at end-of-stream. The listener runs inside the
    drain task, so an exception it raises faults the stream.
    """

    def __init__(self, listener: LineListener):
        super().__init__()
        self._listener = listener

    def _emit(self, line: str) -> None:
        if line.endswith("\r"):
            line = line[:-1]
        self._listener(line)

    async def _drain(self, stream: asyncio.StreamReader) -> str:
        decoder = codecs.getincrementaldecoder(_ENCODING)(errors="replace")
        pending: list[str] = []

        while True:
            chunk = await stream.read(_CHUNK_SIZE)
            text = decoder.decode(chunk, final=not chunk)
            while text:
                head, separator, text = text.partition("\n")
                pending.append(head)
                if not separator:
                    break
                self._emit("".join(pending))
                pending.clear()
            if not chunk:
                break

        tail = "".join(pending)
        if tail:
            self._emit(tail)
        return ""
