"""
Streaming HTTP fetch pipeline.

This module issues GET requests against upstream repositories and exposes
each response body as a readable stream. Every chunk read from the network
is handed to a chain of stream consumers (e.g. a storage writer) before it
reaches the reader (e.g. an XML parser), so a file can be stored and parsed
in a single pass without holding it in memory.
"""

from __future__ import annotations

import io
import logging
import tempfile
from pathlib import Path
from typing import Iterable, Iterator
from urllib.parse import quote, urlsplit, urlunsplit

import requests
import urllib3

from repomirror.core.config import (
    AuthConfig,
    DownloadConfig,
    ProxyConfig,
    RepositoryConfig,
    SSLConfig,
)
from repomirror.core.errors import HttpError

logger = logging.getLogger(__name__)


def _with_credentials(
    proxy_url: str | None, username: str | None, password: str | None
) -> str | None:
    """Embed proxy credentials in the proxy URL.

    requests sends them to the proxy only (Proxy-Authorization), never to
    the upstream server.
    """
    if not proxy_url or not username or not password:
        return proxy_url
    parts = urlsplit(proxy_url)
    host = parts.netloc.rpartition("@")[2]
    netloc = f"{quote(username, safe='')}:{quote(password, safe='')}@{host}"
    return urlunsplit(parts._replace(netloc=netloc))


class StreamConsumer:
    """Receives every chunk of a fetched stream.

    ``close()`` is called once the stream was read to the end, ``abort()``
    when reading or processing failed. Exactly one of them is called.
    """

    def on_chunk(self, data: bytes) -> None:
        """Handle a chunk of bytes read from the stream."""
        raise NotImplementedError

    def close(self) -> None:
        """Finish after the whole stream was consumed."""

    def abort(self) -> None:
        """Discard whatever was received so far."""


class FetchStream(io.RawIOBase):
    """Readable response body that tees every chunk into stream consumers.

    Use it as a context manager. On a clean exit the unread remainder of the
    body is drained through the consumers and they are closed; if the block
    raises, the consumers are aborted instead. The HTTP response is released
    exactly once either way.
    """

    def __init__(
        self,
        response: requests.Response,
        consumers: Iterable[StreamConsumer] = (),
        chunk_size: int = 65536,
        url: str | None = None,
    ):
        """Initialize fetch stream.

        Args:
            response: Streaming response (requested with ``stream=True``)
            consumers: Consumers receiving each chunk, in order
            chunk_size: Bytes requested from the network per chunk
            url: URL of the response, for error messages
        """
        super().__init__()
        self.response = response
        self.consumers: list[StreamConsumer] = list(consumers)
        self.chunk_size = chunk_size
        self.url = url or getattr(response, "url", "")
        self.bytes_read = 0
        self._chunks: Iterator[bytes] | None = None
        self._pending = b""
        self._eof = False
        self._finished = False

    def add_consumer(self, consumer: StreamConsumer) -> None:
        """Register another consumer for chunks not yet read."""
        self.consumers.append(consumer)

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[override]
        """Read up to ``len(buffer)`` bytes, forwarding them to consumers."""
        if not self._pending:
            self._pending = self._next_chunk()
            if not self._pending:
                return 0

        size = min(len(buffer), len(self._pending))
        data, self._pending = self._pending[:size], self._pending[size:]
        buffer[:size] = data
        return size

    def _next_chunk(self) -> bytes:
        """Pull the next non-empty chunk from the network and tee it."""
        if self._eof:
            return b""
        if self._chunks is None:
            # Raw bytes as served, a Content-Encoding is not undone
            self._chunks = self.response.raw.stream(self.chunk_size, decode_content=False)

        try:
            for chunk in self._chunks:
                if chunk:
                    self.bytes_read += len(chunk)
                    for consumer in self.consumers:
                        consumer.on_chunk(chunk)
                    return chunk
        except (urllib3.exceptions.HTTPError, requests.RequestException) as e:
            raise HttpError(self.url, None, str(e)) from e

        self._eof = True
        return b""

    def drain(self) -> int:
        """Read the rest of the body through the consumers.

        Returns:
            Number of bytes drained
        """
        drained = len(self._pending)
        self._pending = b""
        while True:
            chunk = self._next_chunk()
            if not chunk:
                return drained
            drained += len(chunk)

    def finish(self) -> None:
        """Drain the body, close all consumers and release the response."""
        if self._finished:
            return
        try:
            self.drain()
        except BaseException:
            self.abort()
            raise
        self._finished = True
        try:
            for index, consumer in enumerate(self.consumers):
                try:
                    consumer.close()
                except BaseException:
                    for remaining in self.consumers[index + 1 :]:
                        remaining.abort()
                    raise
        finally:
            self._release()

    def abort(self) -> None:
        """Abort all consumers and release the response."""
        if self._finished:
            return
        self._finished = True
        try:
            for consumer in self.consumers:
                consumer.abort()
        finally:
            self._release()

    def _release(self) -> None:
        if not self.closed:
            self.response.close()
            super().close()

    def close(self) -> None:
        # Closing without finish() means the body was not fully consumed
        if not self._finished:
            self.abort()
        else:
            self._release()

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        if exc_type is None:
            self.finish()
        else:
            self.abort()


class Downloader:
    """HTTP client for one upstream repository.

    Holds a ``requests.Session`` configured with the repository's proxy,
    SSL/TLS and authentication settings.
    """

    def __init__(
        self,
        config: RepositoryConfig,
        download_config: DownloadConfig | None = None,
        proxy_config: ProxyConfig | None = None,
        ssl_config: SSLConfig | None = None,
    ):
        """Initialize downloader.

        Args:
            config: Repository configuration
            download_config: Download configuration (timeout, chunk size)
            proxy_config: Optional proxy configuration (repository override wins)
            ssl_config: Optional SSL/TLS configuration (repository override wins)
        """
        self.config = config
        self.download_config = download_config or DownloadConfig()
        self.proxy_config = config.proxy or proxy_config
        self.ssl_config = config.ssl or ssl_config
        self._temp_ca_file: str | None = None

        self.session = self._setup_session()

    def _setup_session(self) -> requests.Session:
        """Build the requests session used for every fetch of this repository."""
        session = requests.Session()
        session.headers["Accept-Encoding"] = "identity"
        if self.proxy_config:
            self._configure_proxy(session, self.proxy_config)
        if self.ssl_config:
            self._configure_tls(session, self.ssl_config)
        if self.config.auth:
            self._setup_auth(session, self.config.auth)
        return session

    def _configure_proxy(self, session: requests.Session, proxy: ProxyConfig) -> None:
        proxies = {
            "http": _with_credentials(proxy.http_proxy, proxy.username, proxy.password),
            "https": _with_credentials(proxy.https_proxy, proxy.username, proxy.password),
            "no_proxy": proxy.no_proxy,
        }
        session.proxies.update({scheme: value for scheme, value in proxies.items() if value})

    def _configure_tls(self, session: requests.Session, ssl: SSLConfig) -> None:
        if not ssl.verify:
            logger.warning(f"TLS verification disabled for {self.config.id}")
            session.verify = False
        elif ssl.ca_cert:
            session.verify = self._write_ca_file(ssl.ca_cert)
        elif ssl.ca_bundle:
            session.verify = ssl.ca_bundle

        if ssl.client_cert:
            session.cert = (ssl.client_cert, ssl.client_key) if ssl.client_key else ssl.client_cert

    def _write_ca_file(self, pem: str) -> str:
        """Store inline PEM certificates in a temp file; requests only takes paths."""
        with tempfile.NamedTemporaryFile(
            mode="w", prefix="repomirror-ca-", suffix=".pem", delete=False
        ) as ca_file:
            ca_file.write(pem)
        self._temp_ca_file = ca_file.name
        return ca_file.name

    def _setup_auth(self, session: requests.Session, auth: AuthConfig) -> None:
        """Apply repository credentials to the session."""
        if auth.type == "client_cert":
            cert = self._find_client_cert(auth)
            if cert:
                session.cert = cert
                logger.info(f"Using client certificate {Path(cert[0]).name}")
        elif auth.type == "basic" and auth.username and auth.password:
            session.auth = (auth.username, auth.password)
            logger.info(f"Using HTTP Basic authentication (user: {auth.username})")
        elif auth.type == "bearer" and auth.token:
            session.headers["Authorization"] = f"Bearer {auth.token}"
            logger.info("Using Bearer token authentication")
        elif auth.type == "custom" and auth.headers:
            session.headers.update(auth.headers)
            logger.info(f"Using custom HTTP headers: {', '.join(sorted(auth.headers))}")

    @staticmethod
    def _find_client_cert(auth: AuthConfig) -> tuple[str, str] | None:
        """Resolve the certificate/key pair of client_cert authentication.

        An entitlement directory holds ``<serial>.pem`` next to
        ``<serial>-key.pem``; the first certificate in name order is used.
        """
        if auth.cert_file and auth.key_file:
            return auth.cert_file, auth.key_file
        if not auth.cert_dir:
            return None

        cert_dir = Path(auth.cert_dir)
        certs = sorted(p for p in cert_dir.glob("*.pem") if not p.name.endswith("-key.pem"))
        if not certs:
            logger.warning(f"No client certificate found in {cert_dir}")
            return None

        key = certs[0].with_name(f"{certs[0].stem}-key.pem")
        if not key.exists():
            logger.warning(f"Key file not found for {certs[0].name}")
            return None
        return str(certs[0]), str(key)

    def fetch(self, url: str, consumers: Iterable[StreamConsumer] = ()) -> FetchStream:
        """Issue a GET request and return the body as a stream.

        Args:
            url: URL to fetch
            consumers: Stream consumers receiving every chunk

        Returns:
            FetchStream over the response body

        Raises:
            HttpError: On transport errors or any non-2xx status
        """
        logger.debug(f"GET {url}")
        try:
            response = self.session.get(url, stream=True, timeout=self.download_config.timeout)
        except requests.RequestException as e:
            raise HttpError(url, None, str(e)) from e

        if not 200 <= response.status_code < 300:
            response.close()
            raise HttpError(url, response.status_code)

        return FetchStream(
            response, consumers, chunk_size=self.download_config.chunk_size, url=url
        )

    def close(self) -> None:
        """Close the HTTP session and remove temporary files."""
        self.session.close()
        if self._temp_ca_file:
            Path(self._temp_ca_file).unlink(missing_ok=True)
            self._temp_ca_file = None

    def __enter__(self) -> "Downloader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
