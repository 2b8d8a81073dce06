import contextlib
import json
import threading
from typing import Any, Callable, Iterator, Protocol

import keyring
import keyring.errors
import structlog

from quotabar.errors import (
    CredentialNotFound,
    CredentialStoreError,
    PermissionDenied,
    StoreUnavailable,
)
from quotabar.models import Credential, CredentialKind, ProviderId

logger = structlog.get_logger()


@contextlib.contextmanager
def _keyring_errors() -> "Iterator[None]":
    try:
        yield
    except keyring.errors.PasswordDeleteError:
        raise
    except keyring.errors.KeyringLocked as exc:
        raise PermissionDenied("keyring is locked") from exc
    except keyring.errors.KeyringError as exc:
        raise StoreUnavailable(f"keyring unavailable ({type(exc).__name__})") from exc


class SecretBackend(Protocol):
    """
    SecretBackend is the platform secret service the credential
    store sits on. Keys are opaque strings, values are the
    serialized credential payload.
    """

    def get(self, key: "str") -> "str | None": ...

    def set(self, key: "str", value: "str") -> "None": ...

    def delete(self, key: "str") -> "bool": ...


class MemoryBackend:
    """
    process-local backend, used for tests and for keys seeded
    from the environment.
    """

    def __init__(self) -> "None":
        self._items: "dict[str, str]" = {}
        self._lock: "threading.Lock" = threading.Lock()

    def get(self, key: "str") -> "str | None":
        with self._lock:
            return self._items.get(key)

    def set(self, key: "str", value: "str") -> "None":
        with self._lock:
            self._items[key] = value

    def delete(self, key: "str") -> "bool":
        with self._lock:
            return self._items.pop(key, None) is not None


class KeychainBackend:
    """
    KeychainBackend stores items in the platform keyring (the macOS
    login keychain, Secret Service on Linux), one password per key
    under a shared service name. Values go through the keyring API
    and never appear on a command line.
    """

    def __init__(
        self,
        service: "str" = "quotabar",
        backend: "Any | None" = None,
    ) -> "None":
        self._service = service
        self._keyring = backend if backend is not None else keyring.get_keyring()

    def get(self, key: "str") -> "str | None":
        with _keyring_errors():
            return self._keyring.get_password(self._service, key)

    def set(self, key: "str", value: "str") -> "None":
        with _keyring_errors():
            self._keyring.set_password(self._service, key, value)

    def delete(self, key: "str") -> "bool":
        try:
            with _keyring_errors():
                self._keyring.delete_password(self._service, key)
        except keyring.errors.PasswordDeleteError:
            return False
        return True


def _encode(credential: "Credential") -> "str":
    return json.dumps(
        {
            "secret": credential.secret,
            "expires_at": credential.expires_at,
            "refresh_token": credential.refresh_token,
        }
    )


def _decode(provider: "ProviderId", kind: "CredentialKind", payload: "str") -> "Credential":
    try:
        data = json.loads(payload)
    except ValueError:
        # items written by other tools hold the bare secret
        return Credential(provider=provider, kind=kind, secret=payload)

    if not isinstance(data, dict) or not isinstance(data.get("secret"), str):
        return Credential(provider=provider, kind=kind, secret=payload)

    expires_at = data.get("expires_at")
    if expires_at is not None:
        try:
            expires_at = float(expires_at)
        except (TypeError, ValueError) as exc:
            raise StoreUnavailable(f"corrupt {kind.value} item for {provider}") from exc
    refresh_token = data.get("refresh_token")
    return Credential(
        provider=provider,
        kind=kind,
        secret=data["secret"],
        expires_at=expires_at,
        refresh_token=refresh_token if isinstance(refresh_token, str) else None,
    )


class CredentialStore:
    """
    CredentialStore is the only component that reads or mutates
    credentials. Operations on the same (provider, kind) key are
    serialized by a per-key lock so a token refresh and a manual
    update can never interleave; different keys proceed
    concurrently.
    """

    def __init__(self, backend: "SecretBackend") -> "None":
        self._backend = backend
        self._locks: "dict[str, threading.Lock]" = {}
        self._locks_guard: "threading.Lock" = threading.Lock()

    @staticmethod
    def make_key(provider: "ProviderId", kind: "CredentialKind") -> "str":
        return f"{provider}:{kind.value}"

    def _lock_for(self, key: "str") -> "threading.Lock":
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def get(self, provider: "ProviderId", kind: "CredentialKind") -> "Credential":
        key = self.make_key(provider, kind)
        with self._lock_for(key):
            payload = self._call(self._backend.get, key)

        if payload is None or payload == "":
            raise CredentialNotFound(f"no {kind.value} stored for {provider}")
        return _decode(provider, kind, payload)

    def put(
        self,
        provider: "ProviderId",
        kind: "CredentialKind",
        credential: "Credential",
    ) -> "None":
        if credential.provider != provider or credential.kind != kind:
            raise ValueError("credential does not match the key it is stored under")

        key = self.make_key(provider, kind)
        with self._lock_for(key):
            self._call(self._backend.set, key, _encode(credential))
        logger.debug("credential_stored", **credential.redacted())

    def delete(self, provider: "ProviderId", kind: "CredentialKind") -> "bool":
        key = self.make_key(provider, kind)
        with self._lock_for(key):
            removed = self._call(self._backend.delete, key)
        logger.debug(
            "credential_deleted", provider=provider, kind=kind.value, removed=removed
        )
        return bool(removed)

    @staticmethod
    def _call(fn: "Callable[..., Any]", *args: "Any") -> "Any":
        try:
            return fn(*args)
        except CredentialStoreError:
            raise
        except PermissionError as exc:
            raise PermissionDenied(str(exc)) from exc
        except OSError as exc:
            raise StoreUnavailable(str(exc)) from exc
