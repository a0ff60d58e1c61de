#!/usr/bin/env python3
"""
Semantic comparison of two decoded certificates.

Certificates are first normalized (names and SANs become sets, key material
is reduced to algorithm plus key bits) and only the normalized values are
compared, so re-encoding a certificate never shows up as a difference.
"""
import sys
from collections import namedtuple

from cryptography.hazmat.primitives import hashes

from cert_decoder import ALGORITHM_NAMES, ATTRIBUTE_NAMES, SAN_DIRNAME, SubjectAltName, decode, oid_name
from cert_errors import CertInspectError, MalformedEncoding
from cert_source import pem_to_der

COMPARED_FIELDS = (
    "serial_number",
    "issuer",
    "subject",
    "validity",
    "public_key",
    "subject_alt_names",
)

Identical = namedtuple("Identical", [])
FieldDifference = namedtuple("FieldDifference", ["field", "old", "new"])
DifferByFields = namedtuple("DifferByFields", ["differences"])
Incomparable = namedtuple("Incomparable", ["side", "reason"])

IDENTICAL = Identical()


def _normalize_san(san):
    if san.kind == SAN_DIRNAME:
        return SubjectAltName(san.kind, frozenset(san.value), san.oid)
    return san


def normalize(cert):
    return {
        "serial_number": cert.serial_number,
        "issuer": frozenset(cert.issuer),
        "subject": frozenset(cert.subject),
        "validity": (cert.validity.not_before, cert.validity.not_after),
        "public_key": (cert.public_key.algorithm, cert.public_key.parameters, cert.public_key.key),
        "subject_alt_names": frozenset(_normalize_san(san) for san in cert.sans),
    }


def compare(a, b):
    """
    Compare two ParsedCertificates field by field.

    Every differing field is reported, in COMPARED_FIELDS order, with ``old``
    taken from ``a`` and ``new`` from ``b``.
    """
    if a.der == b.der:
        return IDENTICAL

    meta1 = normalize(a)
    meta2 = normalize(b)
    differences = []
    for key in COMPARED_FIELDS:
        if meta1[key] != meta2[key]:
            differences.append(FieldDifference(key, meta1[key], meta2[key]))

    if not differences:
        return IDENTICAL
    return DifferByFields(tuple(differences))


def compare_outcomes(first, second):
    """
    Like compare(), but either side may be the MalformedEncoding its decode
    raised instead of a certificate.
    """
    first_failed = isinstance(first, MalformedEncoding)
    second_failed = isinstance(second, MalformedEncoding)
    if first_failed and second_failed:
        return Incomparable("both", f"first: {first}; second: {second}")
    if first_failed:
        return Incomparable("first", str(first))
    if second_failed:
        return Incomparable("second", str(second))
    return compare(first, second)


def unparsed_critical_warnings(cert, label):
    return [
        f"{label} certificate has critical extension {oid} that was not parsed"
        for oid in cert.unhandled_critical
    ]


def _attribute_text(attribute):
    label = ATTRIBUTE_NAMES.get(attribute.oid, attribute.oid)
    if isinstance(attribute.value, str):
        return f"{label}={attribute.value}"
    return f"{label}=#{attribute.value.hex()}"


def _san_text(san):
    if san.kind == SAN_DIRNAME:
        return f"{san.kind}:" + ", ".join(sorted(_attribute_text(a) for a in san.value))
    return str(san)


def display_value(field, value):
    if field == "serial_number":
        return hex(value)
    if field in ("issuer", "subject"):
        return "{" + ", ".join(sorted(_attribute_text(a) for a in value)) + "}"
    if field == "validity":
        not_before, not_after = value
        return f"{not_before.strftime('%Y-%m-%dT%H:%M:%SZ')} .. {not_after.strftime('%Y-%m-%dT%H:%M:%SZ')}"
    if field == "public_key":
        algorithm, parameters, key = value
        digest = hashes.Hash(hashes.SHA256())
        digest.update(key)
        text = oid_name(algorithm, ALGORITHM_NAMES)
        if isinstance(parameters, str):
            text += " " + oid_name(parameters, ALGORITHM_NAMES)
        return f"{text} sha256:{digest.finalize().hex()}"
    if field == "subject_alt_names":
        return "{" + ", ".join(sorted(_san_text(san) for san in value)) + "}"
    return str(value)


def format_comparison(result):
    if isinstance(result, Identical):
        return "identical"
    if isinstance(result, Incomparable):
        return f"incomparable: {result.side} certificate failed to decode: {result.reason}"
    lines = ["Differences detected:"]
    for diff in result.differences:
        old = display_value(diff.field, diff.old)
        new = display_value(diff.field, diff.new)
        lines.append(f"- {diff.field}: {old} → {new}")
    return "\n".join(lines)


def comparison_to_dict(result):
    if isinstance(result, Incomparable):
        return {"identical": False, "incomparable": {"side": result.side, "reason": result.reason}}
    differences = []
    if isinstance(result, DifferByFields):
        for diff in result.differences:
            differences.append({
                "field": diff.field,
                "old": display_value(diff.field, diff.old),
                "new": display_value(diff.field, diff.new),
            })
    return {"identical": isinstance(result, Identical), "differences": differences}


def main(cert1_path, cert2_path):
    def load(path):
        with open(path, "rb") as f:
            data = f.read()
        try:
            return decode(pem_to_der(data))
        except MalformedEncoding as e:
            return e

    result = compare_outcomes(load(cert1_path), load(cert2_path))
    print(format_comparison(result))
    return not isinstance(result, Identical)


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print("Usage: cert_equivalence.py <cert1.pem/der> <cert2.pem/der>")
        sys.exit(1)
    try:
        differ = main(sys.argv[1], sys.argv[2])
    except (OSError, CertInspectError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    sys.exit(1 if differ else 0)
