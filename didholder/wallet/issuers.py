import logging
import time
from typing import Awaitable, Callable

from didholder.core.config import settings
from didholder.wallet.models import OID4VCIConfig

logger = logging.getLogger(__name__)


class IssuerConfigCache:
    """
    Discovery documents keyed by issuer domain (host:port).

    Entries live for the lifetime of the cache unless a TTL is configured;
    invalidate() drops one domain or everything.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[OID4VCIConfig, float]] = {}

    @classmethod
    def from_settings(cls) -> "IssuerConfigCache":
        return cls(ttl_seconds=settings.issuer_config_ttl_seconds)

    def get(self, domain: str) -> OID4VCIConfig | None:
        entry = self._entries.get(domain)
        if entry is None:
            return None
        config, stored_at = entry
        if self.ttl_seconds is not None and self._clock() - stored_at >= self.ttl_seconds:
            logger.debug("Issuer config for %s is stale", domain)
            del self._entries[domain]
            return None
        return config

    def put(self, domain: str, config: OID4VCIConfig) -> None:
        self._entries[domain] = (config, self._clock())

    async def get_or_fetch(
        self,
        domain: str,
        fetch: Callable[[str], Awaitable[OID4VCIConfig]],
    ) -> OID4VCIConfig:
        config = self.get(domain)
        if config is not None:
            logger.debug("Using cached issuer config for %s", domain)
            return config
        config = await fetch(domain)
        self.put(domain, config)
        return config

    def invalidate(self, domain: str | None = None) -> None:
        if domain is None:
            self._entries.clear()
        else:
            self._entries.pop(domain, None)

    def __contains__(self, domain: str) -> bool:
        return self.get(domain) is not None

    def __len__(self) -> int:
        return len(self._entries)
