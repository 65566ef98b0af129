"""External command execution for dump/restore tools.

Database backends that shell out (``pg_dump``, ``pg_restore``) go through
the ``CommandRunner`` protocol so tests can substitute a fake without
spawning real processes.

``SubprocessRunner`` is the real implementation on top of
``asyncio.create_subprocess_exec``.  A process started for streaming is
killed when its stream is closed before the process has exited, and when
the task reading it is cancelled.

Usage:
    runner = SubprocessRunner()

    async with aclosing(await runner.start(["pg_dump", "-d", "app"], env)) as out:
        data = await read_all(out)

    result = await runner.run(["pg_restore", "-d", "app"], env, stdin=stream)
    if result.returncode != 0:
        raise TransferError("restore failed", output=result.output)
"""

import asyncio
import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from db_archive.errors import TransferError
from db_archive.streams import CHUNK_SIZE, ByteStream, iter_chunks

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of a command run to completion."""

    returncode: int
    output: str = ""  # combined stdout/stderr


class CommandRunner(Protocol):
    """Runs external commands, honoring cancellation."""

    async def start(self, args: Sequence[str], env: dict[str, str]) -> ByteStream:
        """Start ``args`` and return its stdout as a stream.

        Reading past the end raises ``TransferError`` if the command exited
        non-zero.  Closing the stream terminates a still-running command.
        """
        ...

    async def run(self, args: Sequence[str], env: dict[str, str], stdin: ByteStream) -> CommandResult:
        """Run ``args`` to completion, feeding ``stdin`` into it."""
        ...


class ProcessStream:
    """``ByteStream`` over a child process's stdout."""

    def __init__(self, process: asyncio.subprocess.Process, command: str) -> None:
        self._process = process
        self._command = command
        self._stderr_task = asyncio.ensure_future(process.stderr.read())

    async def read(self, size: int = -1) -> bytes:
        chunk = await self._process.stdout.read(size)
        if chunk:
            return chunk
        returncode = await self._process.wait()
        if returncode != 0:
            stderr = await self._stderr_task
            raise TransferError(
                f"{self._command} exited with status {returncode}",
                output=stderr.decode(errors="replace"),
            )
        return b""

    async def aclose(self) -> None:
        if self._process.returncode is None:
            logger.debug(f"Terminating {self._command} (pid {self._process.pid})")
            try:
                self._process.kill()
            except ProcessLookupError:
                pass
        await self._process.wait()
        if not self._stderr_task.done():
            self._stderr_task.cancel()
        try:
            await self._stderr_task
        except asyncio.CancelledError:
            if not self._stderr_task.cancelled():
                raise


class SubprocessRunner:
    """``CommandRunner`` backed by real child processes."""

    async def start(self, args: Sequence[str], env: dict[str, str]) -> ProcessStream:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **env},
            )
        except OSError as e:
            raise TransferError(f"failed to start {args[0]}: {e}") from e
        return ProcessStream(process, args[0])

    async def run(self, args: Sequence[str], env: dict[str, str], stdin: ByteStream) -> CommandResult:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env={**os.environ, **env},
            )
        except OSError as e:
            raise TransferError(f"failed to start {args[0]}: {e}") from e

        output_task = asyncio.ensure_future(process.stdout.read())
        try:
            try:
                async for chunk in iter_chunks(stdin, CHUNK_SIZE):
                    process.stdin.write(chunk)
                    await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                # Command exited early; its output explains why.
                pass
            finally:
                process.stdin.close()
            output = await output_task
            returncode = await process.wait()
        except BaseException:
            if process.returncode is None:
                process.kill()
                await process.wait()
            output_task.cancel()
            raise

        return CommandResult(returncode=returncode, output=output.decode(errors="replace"))
