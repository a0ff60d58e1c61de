import logging
import socket
import ssl

from cert_decoder import FROM_NETWORK, RawCertificate
from cert_errors import DnsResolutionError, FetchConnectionError, FetchTimeout, TlsHandshakeError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 443
DEFAULT_TIMEOUT = 10.0


def unverified_inspection_context():
    """
    TLS client context with certificate and hostname verification turned OFF.

    Only for pulling whatever certificate a server presents so it can be
    inspected, expired and self-signed ones included. Nothing fetched through
    this context is trusted, and it must not be reused for connections that
    carry data.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def _connect(domain, port, timeout):
    try:
        return socket.create_connection((domain, port), timeout=timeout)
    except socket.gaierror as e:
        raise DnsResolutionError(domain, f"cannot resolve host: {e.strerror or e}") from e
    except socket.timeout as e:
        raise FetchTimeout(domain, f"connect to port {port} timed out after {timeout}s") from e
    except OSError as e:
        raise FetchConnectionError(domain, f"connect to port {port} failed: {e.strerror or e}") from e


def _handshake(sock, domain, timeout):
    sock.settimeout(timeout)
    try:
        return unverified_inspection_context().wrap_socket(sock, server_hostname=domain)
    except socket.timeout as e:
        raise FetchTimeout(domain, f"TLS handshake timed out after {timeout}s") from e
    except ssl.SSLError as e:
        raise TlsHandshakeError(domain, f"TLS handshake failed: {e.reason or e}") from e
    except OSError as e:
        raise FetchConnectionError(domain, f"connection dropped during TLS handshake: {e.strerror or e}") from e


def fetch(domain, port=DEFAULT_PORT, timeout=DEFAULT_TIMEOUT):
    """Return the leaf certificate ``domain`` presents on ``port``, unverified."""
    logger.debug("Connecting to %s:%s (timeout %ss)", domain, port, timeout)
    with _connect(domain, port, timeout) as sock:
        with _handshake(sock, domain, timeout) as tls:
            logger.debug("Handshake with %s done: %s %s", domain, tls.version(), tls.cipher())
            der = tls.getpeercert(binary_form=True)
    if not der:
        raise TlsHandshakeError(domain, "server presented no certificate")
    return RawCertificate(der, FROM_NETWORK, domain)


def fetch_chain(domain, port=DEFAULT_PORT, timeout=DEFAULT_TIMEOUT):
    """Return every certificate ``domain`` presents, leaf first, unverified."""
    logger.debug("Connecting to %s:%s for the full chain", domain, port)
    with _connect(domain, port, timeout) as sock:
        with _handshake(sock, domain, timeout) as tls:
            if not hasattr(tls, "get_unverified_chain"):
                raise TlsHandshakeError(domain, "retrieving the presented chain needs Python 3.13 or newer")
            chain = tls.get_unverified_chain() or []
    if not chain:
        raise TlsHandshakeError(domain, "server presented no certificate")
    return [RawCertificate(bytes(der), FROM_NETWORK, f"{domain}#{i}") for i, der in enumerate(chain)]
