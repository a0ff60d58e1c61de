#!/usr/bin/env python3
import argparse
import json
import logging
import sys

import cert_equivalence
from cert_decoder import decode
from cert_errors import CertInspectError, IncomparableError, MalformedEncoding
from cert_fetch import DEFAULT_PORT, DEFAULT_TIMEOUT
from cert_info import format_timestamp, full_text_dump, get_cert_info, subject_alt_names, validity_window
from cert_source import load_chain, load_source

logger = logging.getLogger("certinspect")

EXIT_DIFFERENT = 1
EXIT_IO_ERROR = 7


def load_certificate(token, args, stdin=None):
    raw = load_source(token, stdin=stdin, port=args.port, timeout=args.timeout)
    logger.debug("Loaded %d bytes from %s (%s)", len(raw.der), raw.source, raw.origin)
    return decode(raw, strict=args.strict)


def _warn_unparsed(cert, label):
    for warning in cert_equivalence.unparsed_critical_warnings(cert, label):
        logger.warning(warning)


def inspect(args, stdin=None):
    if args.chain:
        raws = load_chain(args.input, stdin=stdin, port=args.port, timeout=args.timeout)
        certs = [decode(raw, strict=args.strict) for raw in raws]
    else:
        certs = [load_certificate(args.input, args, stdin)]

    if args.json:
        infos = [get_cert_info(cert) for cert in certs]
        return json.dumps(infos if args.chain else infos[0], indent=2)
    return "\n\n".join(full_text_dump(cert) for cert in certs)


def sans(args, stdin=None):
    cert = load_certificate(args.input, args, stdin)
    _warn_unparsed(cert, args.input)
    return "\n".join(f"{i}: {san}" for i, san in enumerate(subject_alt_names(cert), start=1))


def validity(args, stdin=None):
    cert = load_certificate(args.input, args, stdin)
    window = validity_window(cert)
    return (
        f"notBefore: {format_timestamp(window.not_before)}\n"
        f"notAfter: {format_timestamp(window.not_after)}"
    )


def compare(args, stdin=None):
    def outcome(token):
        raw = load_source(token, stdin=stdin, port=args.port, timeout=args.timeout)
        try:
            cert = decode(raw, strict=args.strict)
        except MalformedEncoding as e:
            logger.debug("Decoding %s failed: %s", token, e)
            return e
        _warn_unparsed(cert, token)
        return cert

    # sequential on purpose: only the first operand may consume stdin
    first = outcome(args.input1)
    second = outcome(args.input2)
    result = cert_equivalence.compare_outcomes(first, second)
    if isinstance(result, cert_equivalence.Incomparable):
        raise IncomparableError(result.side, result.reason)

    if args.json:
        output = json.dumps(cert_equivalence.comparison_to_dict(result), indent=2)
    else:
        output = cert_equivalence.format_comparison(result)
    return output, isinstance(result, cert_equivalence.Identical)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="certinspect",
        description="Inspect and compare X.509 certificates from a domain, a file or stdin",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug details to stderr")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT,
                        help=f"Connect/handshake timeout in seconds (default {DEFAULT_TIMEOUT})")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"TLS port for domains (default {DEFAULT_PORT})")
    parser.add_argument("--strict", action="store_true", help="Reject non-canonical DER integer and length encodings")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_inspect = subparsers.add_parser("inspect", help="Print every certificate field")
    p_inspect.add_argument("input", help="Domain, certificate file (PEM or DER), or - to read stdin")
    p_inspect.add_argument("--json", action="store_true", help="Print a JSON summary instead of the text dump")
    p_inspect.add_argument("--chain", action="store_true",
                           help="Show every certificate presented by the server or contained in the file")
    p_inspect.set_defaults(handler=inspect)

    p_sans = subparsers.add_parser("sans", help="List Subject Alternative Names")
    p_sans.add_argument("input", help="Domain, certificate file (PEM or DER), or - to read stdin")
    p_sans.set_defaults(handler=sans)

    p_validity = subparsers.add_parser("validity", help="Print notBefore/notAfter in ISO-8601 UTC")
    p_validity.add_argument("input", help="Domain, certificate file (PEM or DER), or - to read stdin")
    p_validity.set_defaults(handler=validity)

    p_compare = subparsers.add_parser("compare", help="Compare two certificates field by field")
    p_compare.add_argument("input1", help="First domain, file or - for stdin")
    p_compare.add_argument("input2", help="Second domain or file")
    p_compare.add_argument("--json", action="store_true", help="Print the comparison as JSON")
    p_compare.set_defaults(handler=compare)
    return parser


def main(argv=None, stdin=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        result = args.handler(args, stdin)
    except CertInspectError as e:
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_IO_ERROR

    exit_code = 0
    if args.command == "compare":
        result, identical = result
        exit_code = 0 if identical else EXIT_DIFFERENT
    if result:
        print(result)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
