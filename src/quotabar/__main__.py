import asyncio
import json
import signal
import sys
from pathlib import Path

import structlog
from prometheus_client import start_http_server

from quotabar.capture import DebugCapture
from quotabar.cli import parse_args
from quotabar.config import Config
from quotabar.credential_files import default_credential_files, import_credential_files
from quotabar.credentials import CredentialStore, KeychainBackend, MemoryBackend, SecretBackend
from quotabar.logging import setup_logging
from quotabar.metrics import MetricsUpdater
from quotabar.models import Credential, CredentialKind, FetchResult, ProviderId, result_to_dict
from quotabar.orchestrator import Orchestrator
from quotabar.ratelimit import RateLimiter
from quotabar.registry import ProviderRegistry, build_registry
from quotabar.store import UsageStore
from quotabar.transport import HttpExecutor

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':9186' or '0.0.0.0:9186'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def _secret_backend(config: "Config") -> "SecretBackend":
    if config.secret_backend == "keychain":
        return KeychainBackend(service=config.keychain_service)
    return MemoryBackend()


def _seed_api_keys(
    config: "Config", registry: "ProviderRegistry", credentials: "CredentialStore"
) -> "None":
    """
    stores API keys given through the environment so api-key
    strategies can find them.
    """
    for provider, key in config.api_keys.items():
        if provider not in registry:
            logger.warning("api_key_for_unknown_provider", provider=provider)
            continue
        credentials.put(
            provider,
            CredentialKind.API_KEY,
            Credential(provider=provider, kind=CredentialKind.API_KEY, secret=key),
        )
        logger.info("api_key_seeded", provider=provider)


def _emit(snapshot: "dict[ProviderId, FetchResult]") -> "None":
    line = {pid: result_to_dict(result) for pid, result in snapshot.items()}
    sys.stdout.write(json.dumps(line, sort_keys=True) + "\n")
    sys.stdout.flush()


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level)

    registry = build_registry(cursor_db=Path(config.cursor_db) if config.cursor_db else None)
    unknown = [p for p in config.providers if p not in registry]
    if unknown:
        raise SystemExit(
            f"Unknown providers: {', '.join(unknown)}. "
            f"Known providers: {', '.join(registry.ids())}"
        )
    provider_ids = config.providers or list(registry.ids())

    credentials = CredentialStore(_secret_backend(config))
    _seed_api_keys(config, registry, credentials)
    if config.import_credentials:
        import_credential_files(credentials, default_credential_files(), provider_ids)

    metrics_updater = MetricsUpdater()
    if config.listen_address:
        host, port = _parse_listen_address(config.listen_address)
        start_http_server(port, addr=host)
        logger.info("metrics_server_started", host=host, port=port)

    capture = None
    if config.debug_capture_dir:
        capture = DebugCapture(config.debug_capture_dir)
        logger.warning("debug_capture_enabled", directory=config.debug_capture_dir)

    limiter = RateLimiter(default=config.rate_limit(), overrides=registry.rate_limits())

    async def _run() -> "None":
        # the HTTP client binds to the running loop
        http = HttpExecutor(
            registry.allowed_hosts(),
            limiter=limiter,
            retry=config.retry_policy(),
            timeout=config.http_timeout,
        )
        orchestrator = Orchestrator(
            registry,
            credentials,
            http,
            store=UsageStore(),
            metrics=metrics_updater,
            capture=capture,
            timeout=config.fetch_timeout,
        )

        try:
            if not config.watch:
                _emit(await orchestrator.fetch_all(provider_ids))
                return

            handle = orchestrator.watch(config.refresh_interval, provider_ids, _emit)
            loop = asyncio.get_running_loop()
            # for SIGINT and SIGTERM, stop the watch loop
            # gracefully
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, handle.cancel)
            await handle.wait()
        finally:
            logger.info("shutting_down")
            await orchestrator.close()
            logger.info("shutdown_complete")

    asyncio.run(_run())


if __name__ == "__main__":
    main()
