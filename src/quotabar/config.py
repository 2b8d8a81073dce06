import os
from dataclasses import dataclass, field
from typing import Mapping

from quotabar.ratelimit import RateLimit
from quotabar.transport import RetryPolicy

_PREFIX = "QUOTABAR_"
_API_KEY_SUFFIX = "_API_KEY"

SECRET_BACKENDS = ("memory", "keychain")
_FALSE_VALUES = ("0", "false", "no", "off")


def _number(environ: "Mapping[str, str]", name: "str", default: "float") -> "float":
    value = environ.get(_PREFIX + name, "")
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{_PREFIX + name} must be a number, got {value!r}") from None


@dataclass
class Config:
    # listen_address: format ":9186" or
    # "0.0.0.0:9186", empty disables the metrics endpoint
    listen_address: "str" = ""
    log_level: "str" = "info"

    # empty means every registered provider
    providers: "list[str]" = field(default_factory=list)
    watch: "bool" = False
    # seconds between watch cycles
    refresh_interval: "float" = 300.0
    # per-provider bound on a whole fetch, in seconds
    fetch_timeout: "float" = 30.0
    # per-request HTTP timeout, in seconds
    http_timeout: "float" = 10.0
    retry_attempts: "int" = 3
    rate_capacity: "int" = 5
    rate_refill: "float" = 1.0

    secret_backend: "str" = "memory"
    keychain_service: "str" = "quotabar"
    # payload dumps are written only when this is set
    debug_capture_dir: "str" = ""
    # overrides the platform location of Cursor's state database
    cursor_db: "str" = ""
    # copy OAuth tokens from provider tool files (~/.claude, ~/.codex,
    # ~/.gemini) into the credential store at startup
    import_credentials: "bool" = True

    # provider id -> API key, seeded into the credential store
    api_keys: "dict[str, str]" = field(default_factory=dict, repr=False)

    @classmethod
    def from_env(cls, environ: "Mapping[str, str] | None" = None) -> "Config":
        env = os.environ if environ is None else environ
        providers = [
            p.strip().lower()
            for p in env.get(_PREFIX + "PROVIDERS", "").split(",")
            if p.strip()
        ]
        api_keys = {
            name[len(_PREFIX) : -len(_API_KEY_SUFFIX)].lower(): value
            for name, value in env.items()
            if name.startswith(_PREFIX) and name.endswith(_API_KEY_SUFFIX) and value
        }
        api_keys.pop("", None)

        backend = env.get(_PREFIX + "SECRET_BACKEND", "memory").lower()
        if backend not in SECRET_BACKENDS:
            raise ValueError(
                f"{_PREFIX}SECRET_BACKEND must be one of {', '.join(SECRET_BACKENDS)}"
            )

        return cls(
            providers=providers,
            refresh_interval=_number(env, "REFRESH_INTERVAL", 300.0),
            fetch_timeout=_number(env, "FETCH_TIMEOUT", 30.0),
            http_timeout=_number(env, "HTTP_TIMEOUT", 10.0),
            retry_attempts=int(_number(env, "RETRY_ATTEMPTS", 3)),
            rate_capacity=int(_number(env, "RATE_CAPACITY", 5)),
            rate_refill=_number(env, "RATE_REFILL", 1.0),
            secret_backend=backend,
            keychain_service=env.get(_PREFIX + "KEYCHAIN_SERVICE", "quotabar"),
            debug_capture_dir=env.get(_PREFIX + "DEBUG_CAPTURE_DIR", ""),
            cursor_db=env.get(_PREFIX + "CURSOR_DB", ""),
            import_credentials=(
                env.get(_PREFIX + "IMPORT_CREDENTIALS", "true").lower() not in _FALSE_VALUES
            ),
            api_keys=api_keys,
        )

    def retry_policy(self) -> "RetryPolicy":
        return RetryPolicy(max_attempts=max(1, self.retry_attempts))

    def rate_limit(self) -> "RateLimit":
        return RateLimit(capacity=self.rate_capacity, refill_per_second=self.rate_refill)
