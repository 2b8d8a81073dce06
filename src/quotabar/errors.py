class FetchError(Exception):
    """
    FetchError is the base of every failure raised while
    acquiring or parsing a provider's usage data.
    """


class AuthRequiredError(FetchError):
    """
    the credential is missing, expired or was rejected. The
    caller should prompt for re-authentication.
    """


class StrategyUnsupportedError(FetchError):
    """
    the strategy cannot run in this environment, e.g. the CLI
    binary or the local database is absent.
    """


class RateLimitedError(FetchError):
    def __init__(self, message: "str", retry_after: "float | None" = None) -> "None":
        super().__init__(message)
        self.retry_after = retry_after


class TransientFetchError(FetchError):
    """
    network or subprocess hiccup that may succeed on a later try.
    """


class PermanentFetchError(FetchError):
    """
    a failure that retrying will not fix.
    """


class ParseError(PermanentFetchError):
    pass


class HostNotAllowedError(PermanentFetchError):
    pass


class RedirectError(PermanentFetchError):
    def __init__(self, message: "str", location: "str | None" = None) -> "None":
        super().__init__(message)
        self.location = location


class NoDataError(PermanentFetchError):
    """
    the source was reachable but held no usage data.
    """


class CredentialStoreError(Exception):
    pass


class CredentialNotFound(CredentialStoreError):
    pass


class StoreUnavailable(CredentialStoreError):
    pass


class PermissionDenied(CredentialStoreError):
    pass


class RegistryError(Exception):
    pass


class DuplicateProviderError(RegistryError):
    pass


class UnknownProviderError(RegistryError, LookupError):
    pass
