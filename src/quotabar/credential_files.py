import base64
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

import structlog

from quotabar.credentials import CredentialStore
from quotabar.errors import CredentialNotFound, CredentialStoreError
from quotabar.models import Credential, CredentialKind, ProviderId

logger = structlog.get_logger()

# epoch values above this are taken as milliseconds
_EPOCH_MS_THRESHOLD = 10_000_000_000


@dataclass(frozen=True)
class TokenFields:
    access_token: "str"
    refresh_token: "str | None" = None
    expires_at: "float | None" = None


@dataclass(frozen=True)
class CredentialFile:
    """
    CredentialFile is a token file written by a provider's own
    command line tool after it logs in. decode turns the file's
    JSON document into token fields, or None when the document
    holds no usable token.
    """

    provider: "ProviderId"
    path: "Path"
    decode: "Callable[[Mapping[str, Any]], TokenFields | None]"


def _str(data: "Mapping[str, Any]", *keys: "str") -> "str | None":
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _epoch(value: "Any") -> "float | None":
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value / 1000 if value > _EPOCH_MS_THRESHOLD else float(value)


def _jwt_expiry(token: "str") -> "float | None":
    """
    reads the exp claim of a JWT without verifying it; the
    provider verifies the token, this only schedules refreshes.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except ValueError:
        return None
    return _epoch(claims.get("exp")) if isinstance(claims, dict) else None


def decode_claude(data: "Mapping[str, Any]") -> "TokenFields | None":
    """
    ~/.claude/.credentials.json nests the token under
    claudeAiOauth; older files hold it at the top level.
    """
    oauth = data.get("claudeAiOauth", data)
    if not isinstance(oauth, dict):
        return None
    access = _str(oauth, "accessToken")
    if access is None:
        return None
    return TokenFields(
        access_token=access,
        refresh_token=_str(oauth, "refreshToken"),
        expires_at=_epoch(oauth.get("expiresAt")),
    )


def decode_codex(data: "Mapping[str, Any]") -> "TokenFields | None":
    tokens = data.get("tokens")
    if not isinstance(tokens, dict):
        return None
    access = _str(tokens, "access_token", "accessToken")
    if access is None:
        return None
    return TokenFields(
        access_token=access,
        refresh_token=_str(tokens, "refresh_token", "refreshToken"),
        expires_at=_jwt_expiry(access),
    )


def decode_gemini(data: "Mapping[str, Any]") -> "TokenFields | None":
    access = _str(data, "access_token")
    if access is None:
        return None
    return TokenFields(
        access_token=access,
        refresh_token=_str(data, "refresh_token"),
        expires_at=_epoch(data.get("expiry_date")),
    )


def default_credential_files(
    home: "Path | None" = None,
    environ: "Mapping[str, str] | None" = None,
) -> "list[CredentialFile]":
    env = os.environ if environ is None else environ
    home = Path.home() if home is None else home
    claude_dir = Path(env["CLAUDE_CONFIG_DIR"]) if env.get("CLAUDE_CONFIG_DIR") else home / ".claude"
    codex_dir = Path(env["CODEX_HOME"]) if env.get("CODEX_HOME") else home / ".codex"
    return [
        CredentialFile("claude", claude_dir / ".credentials.json", decode_claude),
        CredentialFile("codex", codex_dir / "auth.json", decode_codex),
        CredentialFile("gemini", home / ".gemini" / "oauth_creds.json", decode_gemini),
    ]


def _is_newer(candidate: "Credential", current: "Credential | None") -> "bool":
    if current is None:
        return True
    if candidate.secret == current.secret:
        return False
    if candidate.expires_at is not None and current.expires_at is not None:
        return candidate.expires_at > current.expires_at
    # a different token without expiry info means the tool logged in again
    return True


def _read(source: "CredentialFile") -> "TokenFields | None":
    try:
        data = json.loads(source.path.read_text(encoding="utf-8"))
    except OSError as exc:
        logger.warning(
            "credential_file_unreadable", provider=source.provider, error=type(exc).__name__
        )
        return None
    except ValueError:
        logger.warning("credential_file_invalid", provider=source.provider, path=str(source.path))
        return None
    if not isinstance(data, dict):
        logger.warning("credential_file_invalid", provider=source.provider, path=str(source.path))
        return None
    fields = source.decode(data)
    if fields is None:
        logger.warning("credential_file_without_token", provider=source.provider)
    return fields


def import_credential_files(
    credentials: "CredentialStore",
    sources: "Iterable[CredentialFile]",
    providers: "Iterable[ProviderId] | None" = None,
) -> "list[ProviderId]":
    """
    copies OAuth tokens from provider tool files into the
    credential store. A stored token is only replaced by a
    different one that does not expire earlier, so a token the
    store refreshed itself is never rolled back to a stale file.
    Returns the providers whose token was imported.
    """
    wanted = None if providers is None else set(providers)
    imported: "list[ProviderId]" = []
    for source in sources:
        if wanted is not None and source.provider not in wanted:
            continue
        if not source.path.is_file():
            continue

        fields = _read(source)
        if fields is None:
            continue

        candidate = Credential(
            provider=source.provider,
            kind=CredentialKind.OAUTH_TOKEN,
            secret=fields.access_token,
            expires_at=fields.expires_at,
            refresh_token=fields.refresh_token,
        )
        try:
            try:
                current = credentials.get(source.provider, CredentialKind.OAUTH_TOKEN)
            except CredentialNotFound:
                current = None
            if not _is_newer(candidate, current):
                continue
            credentials.put(source.provider, CredentialKind.OAUTH_TOKEN, candidate)
        except CredentialStoreError as exc:
            # the fetch for this provider reports the store failure
            logger.warning(
                "credential_file_not_imported",
                provider=source.provider,
                error=type(exc).__name__,
            )
            continue
        imported.append(source.provider)
        logger.info("credential_file_imported", provider=source.provider, path=str(source.path))
    return imported
