"""Token manager: cache lookup, refresh and flow dispatch.

acquire() works in a fixed order:
1. Normalize parameters and resolve the grant flow if unspecified.
2. Compute the fingerprint.
3. With caching on, return a cached, unexpired record.
4. A cached but expired record with a refresh token is refreshed; if that
   fails the manager falls through to a full acquisition.
5. Otherwise run the grant flow driver, write the result to the cache, then
   return it.

Cache read failures count as misses and cache write failures are logged;
neither hides the token from the caller. Driver errors always propagate.

Usage:
    from aadtoken.auth.cache import TokenCacheStore, default_cache_dir
    from aadtoken.auth.manager import TokenManager
    from aadtoken.auth.params import RequestParameters

    manager = TokenManager(TokenCacheStore(default_cache_dir()))
    record = manager.acquire(RequestParameters(resource=..., tenant=..., app=...))
    headers = {"Authorization": f"Bearer {record.access_token}"}
"""

from __future__ import annotations

import dataclasses
import uuid
from typing import TYPE_CHECKING

from aadtoken.auth.cache import TokenCacheStore, default_cache_dir
from aadtoken.auth.flows import (
    DeviceCodeInfo,
    FlowContext,
    acquire_with_flow,
    redeem_refresh_token,
    request_device_code,
)
from aadtoken.auth.params import RequestParameters, fingerprint, normalize_params
from aadtoken.auth.record import TokenRecord
from aadtoken.auth.selector import detect_browser, select_auth_type
from aadtoken.auth.transport import TokenEndpointClient
from aadtoken.core.errors import CacheError, NetworkError, ProviderError
from aadtoken.core.logging import get_logger, set_correlation_id

if TYPE_CHECKING:
    from aadtoken.config_schema import AppConfig

logger = get_logger(__name__)


class TokenManager:
    """Acquires, caches and refreshes Azure AD tokens.

    Attributes:
        store: Token cache; None disables caching entirely
        context: Collaborators passed to the grant flow drivers
        use_cache: Default for acquire()/refresh() when not given per call
        browser_available: Injected browser capability; None means detect once
        expiry_margin_seconds: Treat tokens this close to expiry as expired
    """

    def __init__(
        self,
        store: TokenCacheStore | None = None,
        context: FlowContext | None = None,
        use_cache: bool = True,
        browser_available: bool | None = None,
        expiry_margin_seconds: int = 0,
    ):
        self.store = store
        self.context = context or FlowContext()
        self.use_cache = use_cache and store is not None
        self.browser_available = browser_available
        self.expiry_margin_seconds = expiry_margin_seconds

    @classmethod
    def from_config(cls, config: AppConfig, interactive: bool = False) -> TokenManager:
        """Build a manager from the YAML configuration.

        Args:
            config: Loaded AppConfig
            interactive: Whether the cache creation gate may prompt the user
        """
        store = TokenCacheStore(default_cache_dir(config.cache.directory), interactive=interactive)
        context = FlowContext(
            client=TokenEndpointClient(timeout=config.network.timeout_seconds),
            redirect_timeout=config.interactive.redirect_timeout_seconds,
            managed_identity_endpoint=config.managed_identity.endpoint,
            managed_identity_timeout=config.managed_identity.timeout_seconds,
        )
        return cls(
            store=store,
            context=context,
            use_cache=config.cache.use_cache,
            browser_available=config.interactive.browser_available,
            expiry_margin_seconds=config.cache.expiry_margin_seconds,
        )

    def prepare(self, params: RequestParameters) -> RequestParameters:
        """Normalize params and resolve auth_type through the flow selector."""
        params = normalize_params(params)
        if params.auth_type is None:
            browser = self.browser_available
            if browser is None:
                browser = detect_browser()
            params = dataclasses.replace(params, auth_type=select_auth_type(params, browser))
        return params

    def acquire(
        self,
        params: RequestParameters,
        use_cache: bool | None = None,
        auth_code: str | None = None,
        device_code: DeviceCodeInfo | None = None,
        code_verifier: str | None = None,
    ) -> TokenRecord:
        """Return a valid token for params, from cache or a fresh grant.

        Args:
            params: Request parameters (auth_type may be left unset)
            use_cache: Override the manager's caching default for this call
            auth_code: Authorization code captured by a hosting app
            device_code: Device code already requested and shown by the host
            code_verifier: PKCE verifier for a hosted auth_code whose
                authorization URI carried a code_challenge

        Raises:
            ConfigurationError, ProviderError, NetworkError, AuthTimeoutError,
            FlowCancelledError, ManagedIdentityUnavailableError
        """
        set_correlation_id(uuid.uuid4().hex[:12])
        try:
            return self._acquire(
                params, self._caching(use_cache), auth_code, device_code, code_verifier
            )
        finally:
            set_correlation_id(None)

    def _acquire(
        self,
        params: RequestParameters,
        use_cache: bool,
        auth_code: str | None,
        device_code: DeviceCodeInfo | None,
        code_verifier: str | None,
    ) -> TokenRecord:
        params = self.prepare(params)
        fp = fingerprint(params)

        if use_cache:
            cached = self._read_cache(fp)
            if cached is not None:
                if not cached.is_expired(margin_seconds=self.expiry_margin_seconds):
                    logger.debug("Token cache hit", fingerprint=fp[:12])
                    return cached

                if cached.can_refresh:
                    logger.info("Cached token expired, refreshing", fingerprint=fp[:12])
                    try:
                        refreshed = redeem_refresh_token(cached, self.context)
                    except (ProviderError, NetworkError) as e:
                        logger.warning(
                            "Token refresh failed, acquiring a new token",
                            fingerprint=fp[:12],
                            error=str(e),
                        )
                    else:
                        self._write_cache(fp, refreshed)
                        return refreshed

        logger.info(
            "Acquiring token",
            auth_type=params.auth_type.value if params.auth_type else None,
            tenant=params.tenant,
            version=params.version,
        )
        record = acquire_with_flow(
            params,
            self.context,
            auth_code=auth_code,
            device_code=device_code,
            code_verifier=code_verifier,
        )
        if use_cache:
            self._write_cache(fp, record)
        logger.info(
            "Token acquired",
            fingerprint=fp[:12],
            expires_at=record.expires_at.isoformat(),
            refreshable=record.can_refresh,
        )
        return record

    def refresh(self, record: TokenRecord, use_cache: bool | None = None) -> TokenRecord:
        """Return a new record for the same request parameters.

        With a refresh token, this redeems it (and does not fall back to
        reauthenticating if Azure AD rejects it). Without one, the original
        grant flow runs again, which may need user interaction.

        The input record is not modified. The result is cached under its
        fingerprint, which equals record.fingerprint.

        Raises:
            ProviderError: If the refresh token was rejected
        """
        if record.can_refresh:
            refreshed = redeem_refresh_token(record, self.context)
        else:
            logger.info("Token has no refresh token, reacquiring", auth_type=str(record.params.auth_type))
            refreshed = acquire_with_flow(record.params, self.context)

        if self._caching(use_cache):
            self._write_cache(refreshed.fingerprint, refreshed)
        return refreshed

    def request_device_code(self, params: RequestParameters) -> DeviceCodeInfo:
        """First half of a split device code flow; pass the result to acquire()."""
        return request_device_code(self.prepare(params), self.context)

    def list_tokens(self) -> list[tuple[str, TokenRecord]]:
        if self.store is None:
            return []
        return self.store.list()

    def delete_token(self, target: str | RequestParameters | TokenRecord) -> bool:
        """Delete a cached token by fingerprint, parameters or record.

        Returns:
            True if a cache entry was removed
        """
        if self.store is None:
            return False
        if isinstance(target, TokenRecord):
            fp = target.fingerprint
        elif isinstance(target, RequestParameters):
            fp = fingerprint(self.prepare(target))
        else:
            fp = target
        return self.store.delete(fp)

    def clear(self) -> int:
        """Delete every cached token."""
        if self.store is None:
            return 0
        return self.store.clear()

    def _caching(self, use_cache: bool | None) -> bool:
        if self.store is None:
            return False
        return self.use_cache if use_cache is None else use_cache

    def _read_cache(self, fp: str) -> TokenRecord | None:
        assert self.store is not None
        try:
            return self.store.get(fp)
        except CacheError as e:
            logger.warning("Ignoring unreadable cached token", fingerprint=fp[:12], error=str(e))
            return None

    def _write_cache(self, fp: str, record: TokenRecord) -> None:
        assert self.store is not None
        try:
            self.store.put(fp, record)
        except CacheError as e:
            logger.warning("Failed to cache token", fingerprint=fp[:12], error=str(e))


def get_token(
    resource: str | list[str] | tuple[str, ...],
    tenant: str | None = None,
    app: str | None = None,
    version: int | None = None,
    use_cache: bool | None = None,
    config: AppConfig | None = None,
    **kwargs: object,
) -> TokenRecord:
    """Acquire a token with a manager built from the configuration.

    Unset tenant, app and version come from the config's defaults section.
    Remaining keyword arguments are RequestParameters fields (auth_type,
    username, password, certificate, on_behalf_of, redirect_uri, ...).

    Example:
        record = get_token("https://management.azure.com/", tenant="contoso", app=APP_ID)
    """
    from aadtoken.config import get_config

    config = config or get_config()
    defaults = config.defaults
    if isinstance(resource, list):
        resource = tuple(resource)
    aad_host = kwargs.pop("aad_host", None) or defaults.aad_host
    params = RequestParameters(
        resource=resource,
        tenant=tenant or defaults.tenant,
        app=app or defaults.app,
        version=version or defaults.version,
        aad_host=str(aad_host),
        **kwargs,  # type: ignore[arg-type]
    )
    return TokenManager.from_config(config).acquire(params, use_cache=use_cache)
