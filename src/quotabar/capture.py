import json
import os
from datetime import datetime, timezone
from pathlib import Path

import structlog

from quotabar.models import RawResponse

logger = structlog.get_logger()

_FILE_MODE = 0o600
_DIR_MODE = 0o700


class DebugCapture:
    """
    DebugCapture dumps raw provider payloads for troubleshooting
    parsers. Payloads may contain account details, so the files
    are owner-only and flagged sensitive. Only constructed when
    a capture directory is explicitly configured.
    """

    def __init__(self, directory: "str | Path") -> "None":
        self._directory = Path(directory)

    @property
    def directory(self) -> "Path":
        return self._directory

    def _ensure_directory(self) -> "None":
        self._directory.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
        # mkdir's mode is masked by the umask and ignored for
        # existing directories
        os.chmod(self._directory, _DIR_MODE)

    def write(self, raw: "RawResponse") -> "Path":
        """
        writes one payload and returns the file path.
        """
        self._ensure_directory()
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        path = self._directory / f"{raw.provider}-{stamp}.sensitive.json"
        document = {
            "sensitive": True,
            "provider": raw.provider,
            "source": raw.source.value,
            "status": raw.status,
            "content_type": raw.content_type,
            "elapsed": raw.elapsed,
            "received_at": raw.received_at.isoformat(),
            "body": raw.text(),
        }

        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, _FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2)

        logger.debug("debug_capture_written", provider=raw.provider, path=str(path))
        return path
