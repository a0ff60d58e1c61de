"""
X.509 certificate decoding on top of der_reader.

decode() turns DER bytes into a ParsedCertificate. Anything the decoder does
not model (attribute types, extensions) is kept with its OID and raw bytes
instead of being dropped.
"""
import logging
from collections import namedtuple
from dataclasses import dataclass, field
from datetime import datetime
from ipaddress import ip_address
from types import MappingProxyType
from typing import Mapping, Tuple

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from cert_errors import MalformedEncoding
from der_reader import (
    BOOLEAN,
    CONTEXT,
    NULL,
    OBJECT_IDENTIFIER,
    OCTET_STRING,
    SEQUENCE,
    SET,
    UNIVERSAL,
    Tlv,
    children,
    decode_bit_string,
    decode_boolean,
    decode_integer,
    decode_octet_string,
    decode_oid,
    decode_string,
    decode_time,
    expect,
    is_string,
    iter_children,
    read_single,
    read_tlv,
)

logger = logging.getLogger(__name__)

OID_SUBJECT_KEY_IDENTIFIER = "2.5.29.14"
OID_KEY_USAGE = "2.5.29.15"
OID_SUBJECT_ALT_NAME = "2.5.29.17"
OID_BASIC_CONSTRAINTS = "2.5.29.19"
OID_AUTHORITY_KEY_IDENTIFIER = "2.5.29.35"
OID_EXTENDED_KEY_USAGE = "2.5.29.37"

ATTRIBUTE_NAMES = {
    "2.5.4.3": "CN",
    "2.5.4.4": "SN",
    "2.5.4.5": "serialNumber",
    "2.5.4.6": "C",
    "2.5.4.7": "L",
    "2.5.4.8": "ST",
    "2.5.4.9": "street",
    "2.5.4.10": "O",
    "2.5.4.11": "OU",
    "2.5.4.12": "title",
    "2.5.4.15": "businessCategory",
    "2.5.4.17": "postalCode",
    "2.5.4.42": "GN",
    "2.5.4.43": "initials",
    "2.5.4.46": "dnQualifier",
    "2.5.4.65": "pseudonym",
    "2.5.4.97": "organizationIdentifier",
    "0.9.2342.19200300.100.1.1": "UID",
    "0.9.2342.19200300.100.1.25": "DC",
    "1.2.840.113549.1.9.1": "emailAddress",
    "1.3.6.1.4.1.311.60.2.1.1": "jurisdictionL",
    "1.3.6.1.4.1.311.60.2.1.2": "jurisdictionST",
    "1.3.6.1.4.1.311.60.2.1.3": "jurisdictionC",
}

ALGORITHM_NAMES = {
    "1.2.840.113549.1.1.1": "rsaEncryption",
    "1.2.840.113549.1.1.4": "md5WithRSAEncryption",
    "1.2.840.113549.1.1.5": "sha1WithRSAEncryption",
    "1.2.840.113549.1.1.10": "rsassaPss",
    "1.2.840.113549.1.1.11": "sha256WithRSAEncryption",
    "1.2.840.113549.1.1.12": "sha384WithRSAEncryption",
    "1.2.840.113549.1.1.13": "sha512WithRSAEncryption",
    "1.2.840.10040.4.1": "dsaEncryption",
    "2.16.840.1.101.3.4.3.2": "dsa_with_SHA256",
    "1.2.840.10045.2.1": "id-ecPublicKey",
    "1.2.840.10045.4.1": "ecdsa-with-SHA1",
    "1.2.840.10045.4.3.2": "ecdsa-with-SHA256",
    "1.2.840.10045.4.3.3": "ecdsa-with-SHA384",
    "1.2.840.10045.4.3.4": "ecdsa-with-SHA512",
    "1.2.840.10045.3.1.7": "prime256v1",
    "1.3.132.0.10": "secp256k1",
    "1.3.132.0.34": "secp384r1",
    "1.3.132.0.35": "secp521r1",
    "1.3.101.110": "X25519",
    "1.3.101.111": "X448",
    "1.3.101.112": "ED25519",
    "1.3.101.113": "ED448",
}

EXTENSION_NAMES = {
    OID_SUBJECT_KEY_IDENTIFIER: "X509v3 Subject Key Identifier",
    OID_KEY_USAGE: "X509v3 Key Usage",
    OID_SUBJECT_ALT_NAME: "X509v3 Subject Alternative Name",
    "2.5.29.18": "X509v3 Issuer Alternative Name",
    OID_BASIC_CONSTRAINTS: "X509v3 Basic Constraints",
    "2.5.29.30": "X509v3 Name Constraints",
    "2.5.29.31": "X509v3 CRL Distribution Points",
    "2.5.29.32": "X509v3 Certificate Policies",
    OID_AUTHORITY_KEY_IDENTIFIER: "X509v3 Authority Key Identifier",
    OID_EXTENDED_KEY_USAGE: "X509v3 Extended Key Usage",
    "1.3.6.1.5.5.7.1.1": "Authority Information Access",
    "1.3.6.1.4.1.11129.2.4.2": "CT Precertificate SCTs",
}

EXTENDED_KEY_USAGE_NAMES = {
    "1.3.6.1.5.5.7.3.1": "TLS Web Server Authentication",
    "1.3.6.1.5.5.7.3.2": "TLS Web Client Authentication",
    "1.3.6.1.5.5.7.3.3": "Code Signing",
    "1.3.6.1.5.5.7.3.4": "E-mail Protection",
    "1.3.6.1.5.5.7.3.8": "Time Stamping",
    "1.3.6.1.5.5.7.3.9": "OCSP Signing",
    "2.5.29.37.0": "Any Extended Key Usage",
}

KEY_USAGE_BITS = (
    "Digital Signature",
    "Non Repudiation",
    "Key Encipherment",
    "Data Encipherment",
    "Key Agreement",
    "Certificate Sign",
    "CRL Sign",
    "Encipher Only",
    "Decipher Only",
)

SAN_DNS = "DNS"
SAN_IP = "IP Address"
SAN_EMAIL = "email"
SAN_URI = "URI"
SAN_DIRNAME = "DirName"
SAN_OTHER = "othername"

FROM_FILE = "file"
FROM_NETWORK = "network"
FROM_STDIN = "stdin"

# DER bytes tagged with where they came from: origin is one of FROM_*, source the
# path, domain or "<stdin>"
RawCertificate = namedtuple("RawCertificate", ["der", "origin", "source"])

NameAttribute = namedtuple("NameAttribute", ["oid", "value"])
ValidityWindow = namedtuple("ValidityWindow", ["not_before", "not_after"])
PublicKeyInfo = namedtuple("PublicKeyInfo", ["algorithm", "parameters", "key", "key_size"])
Extension = namedtuple("Extension", ["oid", "critical", "value", "understood", "decoded"])
BasicConstraints = namedtuple("BasicConstraints", ["ca", "path_length"])


def oid_name(oid, table=None):
    if oid is None:
        return "<none>"
    tables = (table,) if table is not None else (ALGORITHM_NAMES, EXTENSION_NAMES, ATTRIBUTE_NAMES)
    for names in tables:
        if oid in names:
            return names[oid]
    return oid


def _escape_dn_value(value):
    escaped = "".join("\\" + ch if ch in ',+"\\<>;' else ch for ch in value)
    if escaped.startswith(("#", " ")):
        escaped = "\\" + escaped
    if escaped.endswith(" ") and len(escaped) > 1:
        escaped = escaped[:-1] + "\\ "
    return escaped


def format_name(name):
    """Render a distinguished name in encoded order, ``C=US, O=Example, CN=host``."""
    parts = []
    for attribute in name:
        label = ATTRIBUTE_NAMES.get(attribute.oid, attribute.oid)
        if isinstance(attribute.value, str):
            parts.append(f"{label}={_escape_dn_value(attribute.value)}")
        else:
            parts.append(f"{attribute.oid}=#{attribute.value.hex()}")
    return ", ".join(parts)


class SubjectAltName(namedtuple("SubjectAltName", ["kind", "value", "oid"])):
    __slots__ = ()

    def __new__(cls, kind, value, oid=None):
        return super().__new__(cls, kind, value, oid)

    def __str__(self):
        if self.kind == SAN_DIRNAME:
            return f"{self.kind}:{format_name(self.value)}"
        if self.kind == SAN_OTHER:
            if self.oid is None:
                return f"{self.kind}:{self.value.hex()}"
            return f"{self.kind}:{self.oid}:{self.value.hex()}"
        return f"{self.kind}:{self.value}"


@dataclass(frozen=True)
class ParsedCertificate:
    version: int
    serial_number: int
    signature_algorithm: str
    issuer: Tuple[NameAttribute, ...]
    validity: ValidityWindow
    subject: Tuple[NameAttribute, ...]
    public_key: PublicKeyInfo
    # read-only mapping, left out of the hash
    extensions: Mapping[str, Extension] = field(hash=False)
    sans: Tuple[SubjectAltName, ...]
    der: bytes = field(repr=False)
    signature: bytes = field(repr=False, default=b"")

    @property
    def not_before(self) -> datetime:
        return self.validity.not_before

    @property
    def not_after(self) -> datetime:
        return self.validity.not_after

    @property
    def unhandled_critical(self):
        """OIDs of critical extensions that were kept raw."""
        return tuple(ext.oid for ext in self.extensions.values() if ext.critical and not ext.understood)


def _retag(tlv, number):
    # IMPLICIT tags hide the universal type; decode the contents as ``number``
    return Tlv(tlv.data, tlv.offset, UNIVERSAL, tlv.constructed, number, tlv.start, tlv.end)


def _exactly(tlv, count, what, strict):
    items = children(tlv, strict)
    if len(items) != count:
        raise MalformedEncoding(tlv.offset, f"{what} must have {count} elements, found {len(items)}")
    return items


def _decode_algorithm(tlv, strict):
    expect(tlv, SEQUENCE, what="AlgorithmIdentifier SEQUENCE")
    parts = children(tlv, strict)
    if not 1 <= len(parts) <= 2:
        raise MalformedEncoding(tlv.offset, f"AlgorithmIdentifier must have 1 or 2 elements, found {len(parts)}")
    algorithm = decode_oid(parts[0])
    parameters = None
    if len(parts) == 2:
        params = parts[1]
        if params.is_universal(OBJECT_IDENTIFIER):
            parameters = decode_oid(params)
        elif not params.is_universal(NULL):
            parameters = params.encoded
    return algorithm, parameters


def _decode_name(tlv, strict):
    expect(tlv, SEQUENCE, what="Name SEQUENCE")
    attributes = []
    for rdn in iter_children(tlv, strict):
        expect(rdn, SET, what="RelativeDistinguishedName SET")
        atvs = children(rdn, strict)
        if not atvs:
            raise MalformedEncoding(rdn.offset, "empty RelativeDistinguishedName")
        for atv in atvs:
            expect(atv, SEQUENCE, what="AttributeTypeAndValue SEQUENCE")
            attr_type, attr_value = _exactly(atv, 2, "AttributeTypeAndValue", strict)
            oid = decode_oid(attr_type)
            if is_string(attr_value):
                value = decode_string(attr_value)
            else:
                value = attr_value.encoded
            attributes.append(NameAttribute(oid, value))
    return tuple(attributes)


def _decode_validity(tlv, strict):
    expect(tlv, SEQUENCE, what="Validity SEQUENCE")
    before_tlv, after_tlv = _exactly(tlv, 2, "Validity", strict)
    not_before = decode_time(before_tlv)
    not_after = decode_time(after_tlv)
    if not_before > not_after:
        raise MalformedEncoding(
            tlv.offset,
            f"notBefore {not_before.isoformat()} is later than notAfter {not_after.isoformat()}",
        )
    return ValidityWindow(not_before, not_after)


def _key_size(spki_der):
    try:
        public_key = serialization.load_der_public_key(spki_der)
    except (ValueError, UnsupportedAlgorithm) as e:
        logger.debug("Public key size unavailable: %s", e)
        return None
    return getattr(public_key, "key_size", None)


def _decode_public_key(tlv, strict):
    expect(tlv, SEQUENCE, what="SubjectPublicKeyInfo SEQUENCE")
    algorithm_tlv, key_tlv = _exactly(tlv, 2, "SubjectPublicKeyInfo", strict)
    algorithm, parameters = _decode_algorithm(algorithm_tlv, strict)
    _, key = decode_bit_string(key_tlv)
    return PublicKeyInfo(algorithm, parameters, key, _key_size(tlv.encoded))


def _decode_ascii(tlv, what):
    try:
        return tlv.value.decode("ascii")
    except UnicodeDecodeError as e:
        raise MalformedEncoding(tlv.start + e.start, f"non-ASCII {what}") from e


def _decode_general_name(tlv, strict):
    if tlv.tag_class != CONTEXT:
        raise MalformedEncoding(tlv.offset, f"expected a GeneralName, found {tlv.describe()}")
    number = tlv.number
    if number == 0:
        type_id, value = _exactly(tlv, 2, "otherName", strict)
        return SubjectAltName(SAN_OTHER, value.value, decode_oid(type_id))
    if number == 1:
        return SubjectAltName(SAN_EMAIL, _decode_ascii(tlv, "rfc822Name"))
    if number == 2:
        return SubjectAltName(SAN_DNS, _decode_ascii(tlv, "dNSName"))
    if number == 4:
        (name,) = _exactly(tlv, 1, "directoryName", strict)
        return SubjectAltName(SAN_DIRNAME, _decode_name(name, strict))
    if number == 6:
        return SubjectAltName(SAN_URI, _decode_ascii(tlv, "uniformResourceIdentifier"))
    if number == 7:
        if tlv.length not in (4, 16):
            raise MalformedEncoding(tlv.offset, f"iPAddress must be 4 or 16 bytes, found {tlv.length}")
        return SubjectAltName(SAN_IP, ip_address(tlv.value))
    if number == 8:
        return SubjectAltName(SAN_OTHER, b"", decode_oid(_retag(tlv, OBJECT_IDENTIFIER)))
    if number in (3, 5):
        return SubjectAltName(SAN_OTHER, tlv.encoded)
    raise MalformedEncoding(tlv.offset, f"unknown GeneralName tag [{number}]")


def _decode_subject_alt_name(tlv, strict):
    expect(tlv, SEQUENCE, what="GeneralNames SEQUENCE")
    return tuple(_decode_general_name(name, strict) for name in iter_children(tlv, strict))


def _decode_basic_constraints(tlv, strict):
    expect(tlv, SEQUENCE, what="BasicConstraints SEQUENCE")
    ca = False
    path_length = None
    for item in iter_children(tlv, strict):
        if item.is_universal(BOOLEAN):
            ca = decode_boolean(item, strict)
        else:
            path_length = decode_integer(item, strict)
    return BasicConstraints(ca, path_length)


def _decode_key_usage(tlv, strict):
    _, bits = decode_bit_string(tlv)
    usages = []
    for i, name in enumerate(KEY_USAGE_BITS):
        byte = i // 8
        if byte < len(bits) and bits[byte] & (0x80 >> (i % 8)):
            usages.append(name)
    return tuple(usages)


def _decode_extended_key_usage(tlv, strict):
    expect(tlv, SEQUENCE, what="ExtKeyUsageSyntax SEQUENCE")
    return tuple(decode_oid(item) for item in iter_children(tlv, strict))


def _decode_subject_key_identifier(tlv, strict):
    return decode_octet_string(tlv)


def _decode_authority_key_identifier(tlv, strict):
    expect(tlv, SEQUENCE, what="AuthorityKeyIdentifier SEQUENCE")
    for item in iter_children(tlv, strict):
        if item.tag_class == CONTEXT and item.number == 0:
            return decode_octet_string(_retag(item, OCTET_STRING))
    return None


EXTENSION_DECODERS = {
    OID_SUBJECT_ALT_NAME: _decode_subject_alt_name,
    OID_BASIC_CONSTRAINTS: _decode_basic_constraints,
    OID_KEY_USAGE: _decode_key_usage,
    OID_EXTENDED_KEY_USAGE: _decode_extended_key_usage,
    OID_SUBJECT_KEY_IDENTIFIER: _decode_subject_key_identifier,
    OID_AUTHORITY_KEY_IDENTIFIER: _decode_authority_key_identifier,
}


def _decode_extensions(tlv, strict):
    (sequence,) = _exactly(tlv, 1, "extensions [3]", strict)
    expect(sequence, SEQUENCE, what="Extensions SEQUENCE")
    extensions = {}
    for ext in iter_children(sequence, strict):
        expect(ext, SEQUENCE, what="Extension SEQUENCE")
        parts = children(ext, strict)
        if len(parts) not in (2, 3):
            raise MalformedEncoding(ext.offset, f"Extension must have 2 or 3 elements, found {len(parts)}")
        oid = decode_oid(parts[0])
        if oid in extensions:
            raise MalformedEncoding(ext.offset, f"duplicate extension {oid}")
        critical = decode_boolean(parts[1], strict) if len(parts) == 3 else False
        value_tlv = parts[-1]
        value = decode_octet_string(value_tlv)

        handler = EXTENSION_DECODERS.get(oid)
        decoded = None
        if handler is not None:
            inner = read_tlv(value_tlv.data, value_tlv.start, value_tlv.end, strict)
            if inner.end != value_tlv.end:
                raise MalformedEncoding(inner.end, f"trailing bytes in extension {oid_name(oid)}")
            decoded = handler(inner, strict)
        elif critical:
            logger.debug("Keeping unparsed critical extension %s", oid)
        extensions[oid] = Extension(oid, critical, value, handler is not None, decoded)
    return extensions


def decode(raw, strict=False):
    """
    Decode a DER certificate.

    ``raw`` is a RawCertificate or plain bytes. ``strict`` also rejects
    non-canonical INTEGER, BOOLEAN and length encodings. Raises
    MalformedEncoding carrying the absolute byte offset of the problem.
    """
    der = bytes(getattr(raw, "der", raw))
    cert = read_single(der, strict)
    expect(cert, SEQUENCE, what="Certificate SEQUENCE")
    tbs, signature_algorithm_tlv, signature_tlv = _exactly(cert, 3, "Certificate", strict)
    expect(tbs, SEQUENCE, what="TBSCertificate SEQUENCE")
    signature_algorithm, _ = _decode_algorithm(signature_algorithm_tlv, strict)
    _, signature = decode_bit_string(signature_tlv)

    fields = children(tbs, strict)
    pos = 0
    version = 1
    if fields and fields[0].tag_class == CONTEXT and fields[0].number == 0:
        (version_tlv,) = _exactly(fields[0], 1, "version [0]", strict)
        raw_version = decode_integer(version_tlv, strict)
        if raw_version not in (0, 1, 2):
            raise MalformedEncoding(version_tlv.offset, f"unsupported certificate version {raw_version}")
        version = raw_version + 1
        pos = 1

    required = fields[pos:pos + 6]
    if len(required) < 6:
        raise MalformedEncoding(tbs.end, "TBSCertificate is missing required fields")
    serial_tlv, _, issuer_tlv, validity_tlv, subject_tlv, spki_tlv = required

    serial_number = decode_integer(serial_tlv, strict)
    issuer = _decode_name(issuer_tlv, strict)
    validity = _decode_validity(validity_tlv, strict)
    subject = _decode_name(subject_tlv, strict)
    public_key = _decode_public_key(spki_tlv, strict)

    extensions = {}
    seen_extensions = False
    for optional in fields[pos + 6:]:
        if optional.tag_class == CONTEXT and optional.number in (1, 2):
            continue
        if optional.tag_class == CONTEXT and optional.number == 3 and not seen_extensions:
            if version != 3:
                raise MalformedEncoding(optional.offset, f"extensions present in a v{version} certificate")
            extensions = _decode_extensions(optional, strict)
            seen_extensions = True
            continue
        raise MalformedEncoding(optional.offset, f"unexpected {optional.describe()} in TBSCertificate")

    san_extension = extensions.get(OID_SUBJECT_ALT_NAME)
    sans = san_extension.decoded if san_extension is not None else ()

    logger.debug(
        "Decoded certificate serial=%x with %d extensions, %d SANs", serial_number, len(extensions), len(sans)
    )
    return ParsedCertificate(
        version=version,
        serial_number=serial_number,
        signature_algorithm=signature_algorithm,
        issuer=issuer,
        validity=validity,
        subject=subject,
        public_key=public_key,
        extensions=MappingProxyType(extensions),
        sans=sans,
        der=der,
        signature=signature,
    )
