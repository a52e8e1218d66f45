"""
Safe Fetcher - HTTP client with SSRF protection

Every hop (the submitted URL and each redirect target) is validated before
a request is made:
- scheme must be http or https
- the hostname is resolved and every returned address must be public
  (no loopback, private, link-local/metadata, CGNAT, multicast or reserved)

Redirects are followed manually up to a fixed limit. The connection
classes also check the address the socket actually connected to, which
closes the gap where DNS answers change between validation and connect.

The whole fetch, body included, runs under a wall-clock deadline.
"""

import codecs
import ipaddress
import logging
import re
import socket
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, Iterable, Optional
from urllib.parse import urljoin, urlsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool

from utils.errors import ExternalServiceError, FetchTimeoutError, SSRFError

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})
CHUNK_SIZE = 64 * 1024

_META_CHARSET = re.compile(rb"""<meta[^>]+charset=["']?([A-Za-z0-9_-]+)""", re.IGNORECASE)

BLOCKED_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "100.64.0.0/10",  # Carrier-grade NAT
        "127.0.0.0/8",
        "169.254.0.0/16",  # Link-local, cloud metadata service
        "172.16.0.0/12",
        "192.0.0.0/24",
        "192.168.0.0/16",
        "198.18.0.0/15",
        "224.0.0.0/4",
        "240.0.0.0/4",
        "::/128",
        "::1/128",
        "fc00::/7",  # Unique local
        "fe80::/10",  # Link-local
        "ff00::/8",
    )
)

Resolver = Callable[[str, int], list[str]]

DNS_POOL_WORKERS = 2


def is_blocked_address(address: str) -> bool:
    """Whether an IP literal is not a routable public address."""
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0].strip("[]"))
    except ValueError:
        return True

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    if any(ip in network for network in BLOCKED_NETWORKS if ip.version == network.version):
        return True

    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def resolve_host(hostname: str, port: int) -> list[str]:
    """All IPv4 and IPv6 addresses for a hostname."""
    infos = socket.getaddrinfo(hostname, port, type=socket.SOCK_STREAM)
    return sorted({info[4][0] for info in infos})


def _check_peer(sock: socket.socket, host: str) -> None:
    peer = sock.getpeername()[0]
    if is_blocked_address(peer):
        sock.close()
        raise SSRFError(f"connection to {host} landed on blocked address {peer}")


class _GuardedHTTPConnection(HTTPConnection):
    def _new_conn(self) -> socket.socket:
        sock = super()._new_conn()
        _check_peer(sock, self.host)
        return sock


class _GuardedHTTPSConnection(HTTPSConnection):
    def _new_conn(self) -> socket.socket:
        sock = super()._new_conn()
        _check_peer(sock, self.host)
        return sock


class _GuardedHTTPConnectionPool(HTTPConnectionPool):
    ConnectionCls = _GuardedHTTPConnection


class _GuardedHTTPSConnectionPool(HTTPSConnectionPool):
    ConnectionCls = _GuardedHTTPSConnection


class GuardedAdapter(HTTPAdapter):
    """Transport adapter whose sockets refuse to talk to blocked addresses."""

    def init_poolmanager(self, *args, **kwargs) -> None:
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            "http": _GuardedHTTPConnectionPool,
            "https": _GuardedHTTPSConnectionPool,
        }


@dataclass
class FetchResult:
    url: str
    status_code: int
    content_type: Optional[str]
    text: str


class SafeFetcher:
    """Fetches public web pages on behalf of users."""

    def __init__(
        self,
        user_agent: str,
        timeout_seconds: float = 30,
        max_redirects: int = 5,
        max_bytes: int = 10 * 1024 * 1024,
        dns_timeout_seconds: float = 5.0,
        resolver: Optional[Resolver] = None,
        session: Optional[requests.Session] = None,
        dns_pool: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        """
        Args:
            dns_pool: Executor for hostname lookups. When omitted the fetcher
                creates its own and shuts it down in close().
        """
        self.user_agent = user_agent
        self.timeout_seconds = timeout_seconds
        self.max_redirects = max_redirects
        self.max_bytes = max_bytes
        self.dns_timeout_seconds = dns_timeout_seconds
        self.resolver = resolver or resolve_host
        self.session = session or self._build_session()
        self._owns_dns_pool = dns_pool is None
        self.dns_pool = dns_pool or ThreadPoolExecutor(
            max_workers=DNS_POOL_WORKERS, thread_name_prefix="dns"
        )

    def _build_session(self) -> requests.Session:
        session = requests.Session()
        # Proxies from the environment would hide the real peer address
        session.trust_env = False
        adapter = GuardedAdapter()
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def close(self) -> None:
        self.session.close()
        if self._owns_dns_pool:
            # Lookups that outlived their timeout finish on their own threads
            self.dns_pool.shutdown(wait=False, cancel_futures=True)

    def validate_url(self, url: str) -> None:
        """Raise SSRFError unless the URL is http(s) and resolves only to public addresses."""
        try:
            parts = urlsplit(url)
            port = parts.port
        except ValueError as e:
            raise SSRFError(f"invalid URL {url!r}: {e}") from e

        if parts.scheme.lower() not in ALLOWED_SCHEMES:
            raise SSRFError(f"scheme {parts.scheme!r} is not allowed")

        hostname = parts.hostname
        if not hostname:
            raise SSRFError(f"URL has no host: {url!r}")

        if port is None:
            port = 443 if parts.scheme.lower() == "https" else 80

        addresses = self._resolve(hostname, port)
        blocked = [address for address in addresses if is_blocked_address(address)]
        if blocked:
            logger.warning(
                "Blocked fetch to private address",
                extra={"hostname": hostname, "addresses": blocked},
            )
            raise SSRFError(
                f"cannot fetch URLs pointing to private/internal resources ({hostname} -> {blocked[0]})"
            )

    def _resolve(self, hostname: str, port: int) -> Iterable[str]:
        try:
            ipaddress.ip_address(hostname.strip("[]"))
            return [hostname.strip("[]")]
        except ValueError:
            pass

        future = self.dns_pool.submit(self.resolver, hostname, port)
        try:
            addresses = future.result(timeout=self.dns_timeout_seconds)
        except FutureTimeoutError as e:
            future.cancel()
            raise ExternalServiceError("DNS", f"lookup timed out for {hostname}") from e
        except OSError as e:
            raise ExternalServiceError("DNS", f"could not resolve {hostname}", e) from e

        if not addresses:
            raise ExternalServiceError("DNS", f"no addresses for {hostname}")
        return addresses

    def fetch(self, url: str) -> FetchResult:
        """GET a page, validating every hop, within the wall-clock budget."""
        deadline = time.monotonic() + self.timeout_seconds
        current = url

        for _ in range(self.max_redirects + 1):
            self.validate_url(current)
            response = self._get(current, deadline)

            if response.is_redirect:
                location = response.headers.get("location")
                response.close()
                current = urljoin(current, location)
                logger.debug("Following redirect", extra={"location": current})
                continue

            try:
                if not response.ok:
                    raise ExternalServiceError(
                        "HTTP error", f"{response.status_code} {response.reason}"
                    )
                text = self._read_body(response, deadline)
            finally:
                response.close()

            return FetchResult(
                url=current,
                status_code=response.status_code,
                content_type=response.headers.get("content-type"),
                text=text,
            )

        raise ExternalServiceError("Fetch", f"too many redirects (max: {self.max_redirects})")

    def _remaining(self, deadline: float) -> float:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise FetchTimeoutError(self.timeout_seconds)
        return remaining

    def _get(self, url: str, deadline: float) -> requests.Response:
        try:
            return self.session.get(
                url,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
                },
                timeout=self._remaining(deadline),
                allow_redirects=False,
                stream=True,
            )
        except requests.Timeout as e:
            raise FetchTimeoutError(self.timeout_seconds) from e
        except requests.RequestException as e:
            raise ExternalServiceError("Fetch", str(e), e) from e

    def _read_body(self, response: requests.Response, deadline: float) -> str:
        chunks: list[bytes] = []
        size = 0
        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                self._remaining(deadline)
                size += len(chunk)
                if size > self.max_bytes:
                    raise ExternalServiceError("Fetch", f"response exceeds {self.max_bytes} bytes")
                chunks.append(chunk)
        except requests.Timeout as e:
            raise FetchTimeoutError(self.timeout_seconds) from e
        except requests.RequestException as e:
            raise ExternalServiceError("Fetch", str(e), e) from e

        body = b"".join(chunks)
        return body.decode(_detect_encoding(response, body), errors="replace")


def _detect_encoding(response: requests.Response, body: bytes) -> str:
    """Header charset, then a <meta charset>, then utf-8."""
    candidates = []
    if "charset" in response.headers.get("content-type", "").lower():
        candidates.append(response.encoding)
    match = _META_CHARSET.search(body[:4096])
    if match:
        candidates.append(match.group(1).decode("ascii", errors="ignore"))

    for candidate in candidates:
        if not candidate:
            continue
        try:
            return codecs.lookup(candidate).name
        except LookupError:
            continue
    return "utf-8"
