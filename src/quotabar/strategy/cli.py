import asyncio
import contextlib
import shutil
import time
from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar

import structlog

from quotabar.credentials import CredentialStore
from quotabar.errors import StrategyUnsupportedError, TransientFetchError
from quotabar.models import ProviderId, RawResponse, StrategyKind
from quotabar.transport import HttpExecutor

logger = structlog.get_logger()


def _kill(proc: "asyncio.subprocess.Process") -> "None":
    # the process may already be gone
    with contextlib.suppress(ProcessLookupError):
        proc.kill()


@dataclass(frozen=True)
class CliStrategy:
    """
    CliStrategy runs a provider's own command line tool and hands
    its stdout to the parser. The tool manages its own login, so
    no credential is read here.
    """

    kind: "ClassVar[StrategyKind]" = StrategyKind.CLI

    command: "tuple[str, ...]"
    timeout: "float" = 15.0

    async def acquire(
        self,
        provider: "ProviderId",
        credentials: "CredentialStore",
        http: "HttpExecutor",
    ) -> "RawResponse":
        binary = shutil.which(self.command[0])
        if binary is None:
            raise StrategyUnsupportedError(f"{self.command[0]} is not installed")

        logger.debug("cli_exec", provider=provider, command=self.command[0])
        started = time.monotonic()
        proc = await asyncio.create_subprocess_exec(
            binary,
            *self.command[1:],
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, _stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except TimeoutError as exc:
            _kill(proc)
            await proc.wait()
            raise TransientFetchError(
                f"{self.command[0]} timed out after {self.timeout}s"
            ) from exc
        except asyncio.CancelledError:
            _kill(proc)
            # reap the child even when cancelled again while waiting
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(proc.wait())
            raise

        if proc.returncode != 0:
            raise TransientFetchError(f"{self.command[0]} exited with {proc.returncode}")
        if not stdout.strip():
            raise TransientFetchError(f"{self.command[0]} produced no output")

        return RawResponse(
            provider=provider,
            source=self.kind,
            body=stdout,
            status=proc.returncode,
            content_type="text/plain",
            elapsed=time.monotonic() - started,
            received_at=datetime.now().astimezone(),
        )
