"""
Decide where a certificate comes from and load its DER bytes.

Resolution order for an input token:

1. an existing regular file (so a file called ``example.com`` in the working
   directory is read as a file, never contacted as a domain);
2. anything containing a dot and no path separator is a domain;
3. bytes piped on stdin;
4. otherwise UnresolvableInput.
"""
import base64
import binascii
import logging
import os
import re
import sys

import cert_fetch
from cert_decoder import FROM_FILE, FROM_STDIN, RawCertificate
from cert_errors import MalformedEncoding, UnresolvableInput

logger = logging.getLogger(__name__)

KIND_FILE = "file"
KIND_DOMAIN = "domain"
KIND_STDIN = "stdin"

PEM_PATTERN = re.compile(
    rb"-----BEGIN CERTIFICATE-----\s*(.*?)\s*-----END CERTIFICATE-----", re.S
)

_SEPARATORS = tuple(sep for sep in {"/", os.sep, os.altsep} if sep)


def _read_stdin(stdin):
    if stdin is None:
        return b""
    try:
        if stdin.isatty():
            return b""
    except (AttributeError, ValueError):
        pass
    stream = getattr(stdin, "buffer", stdin)
    return stream.read()


def classify(token, stdin=None):
    """
    Return ``(kind, payload)``; payload is the token itself for files and
    domains, the captured bytes for stdin.
    """
    if os.path.isfile(token):
        return KIND_FILE, token
    if "." in token and not any(sep in token for sep in _SEPARATORS):
        return KIND_DOMAIN, token
    data = _read_stdin(sys.stdin if stdin is None else stdin)
    if data:
        return KIND_STDIN, data
    raise UnresolvableInput(token)


def pem_to_der(data):
    """Unwrap the first PEM CERTIFICATE block; bytes without one are taken as DER."""
    match = PEM_PATTERN.search(data)
    if match is None:
        return data
    body = b"".join(match.group(1).split())
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedEncoding(match.start(1), f"invalid base64 in PEM block: {e}") from e


def load_source(token, stdin=None, port=cert_fetch.DEFAULT_PORT, timeout=cert_fetch.DEFAULT_TIMEOUT):
    kind, payload = classify(token, stdin)
    logger.debug("Input %r resolved as %s", token, kind)
    if kind == KIND_DOMAIN:
        return cert_fetch.fetch(payload, port=port, timeout=timeout)
    if kind == KIND_FILE:
        with open(payload, "rb") as f:
            data = f.read()
        return RawCertificate(pem_to_der(data), FROM_FILE, payload)
    return RawCertificate(pem_to_der(payload), FROM_STDIN, "<stdin>")


def load_chain(token, stdin=None, port=cert_fetch.DEFAULT_PORT, timeout=cert_fetch.DEFAULT_TIMEOUT):
    """All certificates for ``token``: the presented chain for domains, every PEM block otherwise."""
    kind, payload = classify(token, stdin)
    if kind == KIND_DOMAIN:
        return cert_fetch.fetch_chain(payload, port=port, timeout=timeout)
    if kind == KIND_FILE:
        with open(payload, "rb") as f:
            data = f.read()
        origin, source = FROM_FILE, payload
    else:
        data, origin, source = payload, FROM_STDIN, "<stdin>"
    blocks = list(PEM_PATTERN.finditer(data))
    if not blocks:
        return [RawCertificate(data, origin, source)]
    return [RawCertificate(pem_to_der(block.group(0)), origin, f"{source}#{i}") for i, block in enumerate(blocks)]
