import logging
from urllib.parse import unquote, urlsplit

from didholder.core.config import settings

logger = logging.getLogger(__name__)

DID_WEB_PREFIX = "did:web:"


def default_port(host: str) -> int | None:
    """Deployment default port for a known issuer host (or any of its subdomains)."""
    for name, port in settings.issuer_default_ports.items():
        if host == name or host.endswith("." + name):
            return port
    return None


def normalize_issuer_domain(domain: str) -> str:
    """host -> host:port when the host is in ISSUER_DEFAULT_PORTS; explicit ports win."""
    domain = domain.strip()
    if not domain or ":" in domain:
        return domain
    port = default_port(domain)
    return f"{domain}:{port}" if port else domain


def extract_issuer_domain(issuer: str) -> str:
    """
    Issuer identifier -> host:port used to reach the issuer's API.

    did:web:example.org              -> example.org
    did:web:example.org%3A8443:users -> example.org:8443
    https://example.org:8443/x       -> example.org:8443
    example.org:8443                 -> example.org:8443
    """
    if not issuer:
        return ""

    if issuer.startswith(DID_WEB_PREFIX):
        # did:web path segments follow the host, ':'-separated; a port is %3A-encoded
        domain = unquote(issuer[len(DID_WEB_PREFIX):].split(":")[0])
    elif issuer.startswith(("http://", "https://")):
        try:
            parts = urlsplit(issuer)
            domain = parts.hostname or ""
            if parts.port:
                domain = f"{domain}:{parts.port}"
        except ValueError:
            logger.warning("Could not parse issuer URL %r, using it verbatim", issuer)
            domain = issuer
    else:
        domain = issuer

    return normalize_issuer_domain(domain)
