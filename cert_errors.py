"""Error types raised while acquiring, decoding and comparing certificates."""


class CertInspectError(Exception):
    exit_code = 1


class UnresolvableInput(CertInspectError):
    exit_code = 3

    def __init__(self, token):
        self.token = token
        super().__init__(
            f"'{token}' is not a file, does not look like a domain, and no certificate was piped on stdin"
        )


class FetchError(CertInspectError):
    """Base class for network-stage failures."""
    exit_code = 4

    def __init__(self, domain, reason):
        self.domain = domain
        self.reason = reason
        super().__init__(f"{domain}: {reason}")


class FetchConnectionError(FetchError):
    pass


class DnsResolutionError(FetchConnectionError):
    pass


class FetchTimeout(FetchError):
    pass


class TlsHandshakeError(FetchError):
    pass


class MalformedEncoding(CertInspectError):
    exit_code = 5

    def __init__(self, offset, reason):
        self.offset = offset
        self.reason = reason
        super().__init__(f"malformed certificate at byte offset {offset}: {reason}")


class IncomparableError(CertInspectError):
    exit_code = 6

    def __init__(self, side, reason):
        self.side = side
        self.reason = reason
        super().__init__(f"cannot compare, {side} certificate failed to decode: {reason}")
