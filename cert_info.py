#!/usr/bin/env python3
"""
Views of a ParsedCertificate used by the certinspect commands.

full_text_dump() is read by other tooling, so its field order and labels are
fixed: version, serial, signature algorithm, issuer, validity, subject,
public key, extensions, SANs, fingerprint.
"""
import json
import sys

from cryptography.hazmat.primitives import hashes

from cert_decoder import (
    ALGORITHM_NAMES,
    EXTENDED_KEY_USAGE_NAMES,
    EXTENSION_NAMES,
    OID_AUTHORITY_KEY_IDENTIFIER,
    OID_BASIC_CONSTRAINTS,
    OID_EXTENDED_KEY_USAGE,
    OID_KEY_USAGE,
    OID_SUBJECT_ALT_NAME,
    OID_SUBJECT_KEY_IDENTIFIER,
    decode,
    format_name,
    oid_name,
)
from cert_errors import CertInspectError
from cert_source import pem_to_der

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
HEX_BYTES_PER_LINE = 15


def format_timestamp(value):
    return value.strftime(TIMESTAMP_FORMAT)


def colon_hex(data, upper=False):
    text = ":".join(f"{b:02x}" for b in data)
    return text.upper() if upper else text


def _hex_block(data, indent):
    if not data:
        return [indent + "<empty>"]
    return [
        indent + colon_hex(data[i:i + HEX_BYTES_PER_LINE])
        for i in range(0, len(data), HEX_BYTES_PER_LINE)
    ]


def sha256_fingerprint(cert):
    digest = hashes.Hash(hashes.SHA256())
    digest.update(cert.der)
    return digest.finalize()


def subject_alt_names(cert):
    """SANs in encoded order; empty when the certificate has no SAN extension."""
    return tuple(cert.sans)


def validity_window(cert):
    return cert.validity


def _render_extension_value(ext):
    if ext.oid == OID_SUBJECT_ALT_NAME:
        return ", ".join(str(san) for san in ext.decoded) or "<empty>"
    if ext.oid == OID_BASIC_CONSTRAINTS:
        text = "CA:TRUE" if ext.decoded.ca else "CA:FALSE"
        if ext.decoded.path_length is not None:
            text += f", pathlen:{ext.decoded.path_length}"
        return text
    if ext.oid == OID_KEY_USAGE:
        return ", ".join(ext.decoded) or "<none>"
    if ext.oid == OID_EXTENDED_KEY_USAGE:
        return ", ".join(EXTENDED_KEY_USAGE_NAMES.get(oid, oid) for oid in ext.decoded) or "<none>"
    if ext.oid == OID_SUBJECT_KEY_IDENTIFIER:
        return colon_hex(ext.decoded, upper=True)
    if ext.oid == OID_AUTHORITY_KEY_IDENTIFIER:
        if ext.decoded is None:
            return "<no key identifier>"
        return "keyid:" + colon_hex(ext.decoded, upper=True)
    return None


def _extension_lines(cert):
    if not cert.extensions:
        return ["        <none>"]
    lines = []
    for ext in cert.extensions.values():
        label = EXTENSION_NAMES.get(ext.oid, ext.oid)
        flags = []
        if ext.critical:
            flags.append("critical")
        if not ext.understood:
            flags.append("unparsed")
        lines.append(f"        {label}:" + (" " + ", ".join(flags) if flags else ""))
        rendered = _render_extension_value(ext) if ext.understood else None
        if rendered is None:
            lines.extend(_hex_block(ext.value, "            "))
        else:
            lines.append("            " + rendered)
    return lines


def full_text_dump(cert):
    key = cert.public_key
    if key.parameters is None:
        parameters = "<none>"
    elif isinstance(key.parameters, str):
        parameters = ALGORITHM_NAMES.get(key.parameters, key.parameters)
    else:
        parameters = colon_hex(key.parameters)
    key_size = f"{key.key_size} bit" if key.key_size is not None else "unknown"

    lines = [
        "Certificate:",
        f"    Version: {cert.version} (0x{cert.version - 1:x})",
        f"    Serial Number: {cert.serial_number} ({hex(cert.serial_number)})",
        f"    Signature Algorithm: {oid_name(cert.signature_algorithm, ALGORITHM_NAMES)}",
        f"    Issuer: {format_name(cert.issuer)}",
        "    Validity:",
        f"        Not Before: {format_timestamp(cert.not_before)}",
        f"        Not After : {format_timestamp(cert.not_after)}",
        f"    Subject: {format_name(cert.subject)}",
        "    Subject Public Key Info:",
        f"        Public Key Algorithm: {oid_name(key.algorithm, ALGORITHM_NAMES)}",
        f"        Parameters: {parameters}",
        f"        Key Size: {key_size}",
        "        Public Key:",
    ]
    lines.extend(_hex_block(key.key, "            "))
    lines.append("    X509v3 Extensions:")
    lines.extend(_extension_lines(cert))
    lines.append("    Subject Alternative Names:")
    sans = subject_alt_names(cert)
    if sans:
        lines.extend(f"        {i}: {san}" for i, san in enumerate(sans, start=1))
    else:
        lines.append("        <none>")
    for oid in cert.unhandled_critical:
        lines.append(f"    WARNING: critical extension {oid} is not understood")
    lines.append(f"    SHA256 Fingerprint: {colon_hex(sha256_fingerprint(cert), upper=True)}")
    return "\n".join(lines)


def get_cert_info(cert):
    window = validity_window(cert)
    return {
        "subject": format_name(cert.subject),
        "issuer": format_name(cert.issuer),
        "serial": format(cert.serial_number, 'X'),
        "not_before": format_timestamp(window.not_before),
        "not_after": format_timestamp(window.not_after),
        "fingerprint_sha256": sha256_fingerprint(cert).hex(),
        "signature_algorithm": oid_name(cert.signature_algorithm, ALGORITHM_NAMES),
        "subject_alt_names": [str(san) for san in subject_alt_names(cert)],
        "unhandled_critical_extensions": list(cert.unhandled_critical),
    }


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: cert_info.py <certificate file>", file=sys.stderr)
        sys.exit(1)

    cert_path = sys.argv[1]
    try:
        with open(cert_path, "rb") as f:
            cert = decode(pem_to_der(f.read()))
        print(json.dumps(get_cert_info(cert), indent=None))
    except (OSError, CertInspectError) as e:
        print(f"Error processing {cert_path}: {e}", file=sys.stderr)
        sys.exit(2)
