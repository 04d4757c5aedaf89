"""Tests for process execution with concurrent output draining."""

import asyncio
import sys
import time

import pytest
from managed_sdk import AccumulatingConsumer
from managed_sdk import CommandCancelledError
from managed_sdk import CommandExecutionError
from managed_sdk import CommandLaunchError
from managed_sdk import CommandTimeoutError
from managed_sdk import ForwardingConsumer
from managed_sdk import ProcessExecutor
from managed_sdk import ProcessInvocation
from managed_sdk.process import merge_environment


def python(code: str, **kwargs) -> ProcessInvocation:
    return ProcessInvocation(command=(sys.executable, "-c", code), **kwargs)


@pytest.mark.asyncio
async def test_run_returns_exit_code_and_output():
    """Test exit code is returned and both streams captured."""
    stdout, stderr = AccumulatingConsumer(), AccumulatingConsumer()
    code = "import sys; sys.stdout.write('out'); sys.stderr.write('err'); sys.exit(3)"

    exit_code = await ProcessExecutor().run(python(code), stdout, stderr)

    assert exit_code == 3
    assert await stdout.get() == "out"
    assert await stderr.get() == "err"


@pytest.mark.asyncio
async def test_large_output_on_both_streams_does_not_deadlock():
    """Test output far beyond the OS pipe buffer completes on both streams."""
    stdout, stderr = AccumulatingConsumer(), AccumulatingConsumer()
    size = 10 * 1024 * 1024
    code = (
        "import sys\n"
        f"sys.stderr.write('e' * {size})\n"
        "sys.stderr.flush()\n"
        f"sys.stdout.write('o' * {size})\n"
    )

    exit_code = await asyncio.wait_for(ProcessExecutor().run(python(code), stdout, stderr), timeout=60)

    assert exit_code == 0
    assert len(await stderr.get()) == size
    assert len(await stdout.get()) == size


@pytest.mark.asyncio
async def test_missing_binary_raises_launch_error(tmp_path):
    """Test launch failure raises before any draining."""
    stdout, stderr = AccumulatingConsumer(), AccumulatingConsumer()
    invocation = ProcessInvocation(command=(str(tmp_path / "does-not-exist"),))

    with pytest.raises(CommandLaunchError):
        await ProcessExecutor().run(invocation, stdout, stderr)

    assert stdout.handle is None
    assert stderr.handle is None


@pytest.mark.asyncio
async def test_working_directory_and_environment(tmp_path):
    """Test cwd and env overrides reach the child, layered on the inherited env."""
    stdout = AccumulatingConsumer()
    code = "import os; print(os.getcwd()); print(os.environ['SDK_TEST_VAR']); print('PATH' in os.environ)"
    invocation = python(code, working_directory=tmp_path, environment={"SDK_TEST_VAR": "hello"})

    exit_code = await ProcessExecutor().run(invocation, stdout, AccumulatingConsumer())

    assert exit_code == 0
    cwd, value, has_path = (await stdout.get()).splitlines()
    assert cwd == str(tmp_path.resolve())
    assert value == "hello"
    assert has_path == "True"


def test_merge_environment_override_wins():
    """Test override keys replace inherited values."""
    merged = merge_environment({"A": "new", "C": "3"}, base={"A": "old", "B": "2"})

    assert merged == {"A": "new", "B": "2", "C": "3"}


@pytest.mark.asyncio
async def test_timeout_terminates_process():
    """Test timeout kills the process and is reported distinctly."""
    lines: list[str] = []
    code = "import sys, time; print('started', flush=True); time.sleep(60)"
    started = time.monotonic()

    with pytest.raises(CommandTimeoutError):
        await ProcessExecutor().run(python(code, timeout=2.0), ForwardingConsumer(lines.append), AccumulatingConsumer())

    assert time.monotonic() - started < 30
    assert lines == ["started"]


@pytest.mark.asyncio
async def test_cancel_event_terminates_process():
    """Test cooperative cancellation kills the process and is reported distinctly."""
    cancel = asyncio.Event()
    code = "import time; time.sleep(60)"

    run = asyncio.create_task(
        ProcessExecutor().run(python(code), AccumulatingConsumer(), AccumulatingConsumer(), cancel_event=cancel)
    )
    await asyncio.sleep(0.5)
    cancel.set()

    with pytest.raises(CommandCancelledError):
        await asyncio.wait_for(run, timeout=30)


@pytest.mark.asyncio
async def test_task_cancellation_terminates_process():
    """Test cancelling the awaiting task kills the process and re-raises CancelledError."""
    stdout = ForwardingConsumer(lambda line: None)
    code = "import time; print('ready', flush=True); time.sleep(60)"

    run = asyncio.create_task(ProcessExecutor().run(python(code), stdout, AccumulatingConsumer()))
    await asyncio.sleep(0.5)
    run.cancel()

    with pytest.raises(asyncio.CancelledError):
        await run
    assert stdout.handle is not None and stdout.handle.done()


@pytest.mark.asyncio
async def test_listener_fault_raises_execution_error():
    """Test a stream fault is an execution error, and the process is not left running."""

    def listener(line: str) -> None:
        raise RuntimeError("listener broke")

    code = "import time; print('x', flush=True); time.sleep(60)"

    with pytest.raises(CommandExecutionError, match="listener broke"):
        await asyncio.wait_for(
            ProcessExecutor().run(python(code), ForwardingConsumer(listener), AccumulatingConsumer()),
            timeout=30,
        )
