import asyncio
import json
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, ClassVar

import structlog

from quotabar.credentials import CredentialStore
from quotabar.errors import (
    NoDataError,
    PermanentFetchError,
    StrategyUnsupportedError,
    TransientFetchError,
)
from quotabar.models import ProviderId, RawResponse, StrategyKind
from quotabar.transport import HttpExecutor

logger = structlog.get_logger()


def _cell(value: "Any") -> "Any":
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return value


@dataclass(frozen=True)
class LocalDbStrategy:
    """
    LocalDbStrategy reads a provider's local SQLite state. The
    database is always opened read-only and queried with bound
    parameters; rows are handed to the parser as a JSON list of
    column -> value objects.
    """

    kind: "ClassVar[StrategyKind]" = StrategyKind.LOCAL_DB

    # resolved per call, the location can depend on the platform
    path: "Callable[[], Path | None]"
    query: "str"
    params: "tuple[Any, ...]" = ()

    async def acquire(
        self,
        provider: "ProviderId",
        credentials: "CredentialStore",
        http: "HttpExecutor",
    ) -> "RawResponse":
        path = self.path()
        if path is None or not path.is_file():
            raise StrategyUnsupportedError(f"no local database for {provider}")

        started = time.monotonic()
        rows = await asyncio.to_thread(self._read, path)
        logger.debug("local_db_read", provider=provider, rows=len(rows))
        if not rows:
            raise NoDataError(f"local database for {provider} holds no usage rows")

        return RawResponse(
            provider=provider,
            source=self.kind,
            body=json.dumps(rows).encode(),
            content_type="application/json",
            elapsed=time.monotonic() - started,
            received_at=datetime.now().astimezone(),
        )

    def _read(self, path: "Path") -> "list[dict[str, Any]]":
        uri = f"{path.resolve().as_uri()}?mode=ro"
        try:
            conn = sqlite3.connect(uri, uri=True, timeout=2.0)
        except sqlite3.OperationalError as exc:
            raise TransientFetchError(f"cannot open {path.name}") from exc

        try:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(self.query, self.params)
            return [{key: _cell(row[key]) for key in row.keys()} for row in cursor]
        except sqlite3.OperationalError as exc:
            if "locked" in str(exc).lower():
                raise TransientFetchError(f"{path.name} is locked") from exc
            raise PermanentFetchError(f"cannot query {path.name}: {exc}") from exc
        except sqlite3.DatabaseError as exc:
            raise PermanentFetchError(f"{path.name} is not a readable database") from exc
        finally:
            conn.close()
