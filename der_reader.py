"""
Minimal DER (ASN.1 distinguished encoding rules) reader.

Every TLV keeps absolute offsets into the buffer it was read from, so a
failure anywhere in a nested structure can be reported against the byte
position of the original certificate.
"""
import re
from datetime import datetime, timezone

from cert_errors import MalformedEncoding

UNIVERSAL = 0
APPLICATION = 1
CONTEXT = 2
PRIVATE = 3

BOOLEAN = 0x01
INTEGER = 0x02
BIT_STRING = 0x03
OCTET_STRING = 0x04
NULL = 0x05
OBJECT_IDENTIFIER = 0x06
UTF8_STRING = 0x0C
SEQUENCE = 0x10
SET = 0x11
NUMERIC_STRING = 0x12
PRINTABLE_STRING = 0x13
T61_STRING = 0x14
IA5_STRING = 0x16
UTC_TIME = 0x17
GENERALIZED_TIME = 0x18
VISIBLE_STRING = 0x1A
UNIVERSAL_STRING = 0x1C
BMP_STRING = 0x1E

STRING_CODECS = {
    UTF8_STRING: "utf-8",
    NUMERIC_STRING: "ascii",
    PRINTABLE_STRING: "ascii",
    T61_STRING: "latin-1",
    IA5_STRING: "ascii",
    VISIBLE_STRING: "ascii",
    UNIVERSAL_STRING: "utf-32-be",
    BMP_STRING: "utf-16-be",
}

UNIVERSAL_NAMES = {
    BOOLEAN: "BOOLEAN",
    INTEGER: "INTEGER",
    BIT_STRING: "BIT STRING",
    OCTET_STRING: "OCTET STRING",
    NULL: "NULL",
    OBJECT_IDENTIFIER: "OBJECT IDENTIFIER",
    UTF8_STRING: "UTF8String",
    SEQUENCE: "SEQUENCE",
    SET: "SET",
    NUMERIC_STRING: "NumericString",
    PRINTABLE_STRING: "PrintableString",
    T61_STRING: "T61String",
    IA5_STRING: "IA5String",
    UTC_TIME: "UTCTime",
    GENERALIZED_TIME: "GeneralizedTime",
    VISIBLE_STRING: "VisibleString",
    UNIVERSAL_STRING: "UniversalString",
    BMP_STRING: "BMPString",
}

_TIME_PATTERN = re.compile(r"^(\d{2}|\d{4})(\d{2})(\d{2})(\d{2})(\d{2})(\d{2})Z$")


class Tlv:
    """One tag-length-value element inside ``data``."""

    __slots__ = ("data", "offset", "tag_class", "constructed", "number", "start", "end")

    def __init__(self, data, offset, tag_class, constructed, number, start, end):
        self.data = data
        self.offset = offset
        self.tag_class = tag_class
        self.constructed = constructed
        self.number = number
        self.start = start
        self.end = end

    @property
    def value(self) -> bytes:
        return bytes(self.data[self.start:self.end])

    @property
    def encoded(self) -> bytes:
        return bytes(self.data[self.offset:self.end])

    @property
    def length(self) -> int:
        return self.end - self.start

    def is_universal(self, number):
        return self.tag_class == UNIVERSAL and self.number == number

    def is_context(self, number):
        return self.tag_class == CONTEXT and self.number == number

    def describe(self):
        if self.tag_class == UNIVERSAL:
            return UNIVERSAL_NAMES.get(self.number, f"universal tag {self.number}")
        kind = ("universal", "application", "context", "private")[self.tag_class]
        return f"{kind} [{self.number}]"

    def __repr__(self):
        return f"<Tlv {self.describe()} at {self.offset} len={self.length}>"


def read_tlv(data, offset=0, end=None, strict=False):
    """
    Read a single TLV starting at ``offset`` that must fit before ``end``.

    Rejects truncated identifier and length fields, indefinite lengths and
    lengths that run past ``end``. With ``strict`` set, non-minimal length
    encodings are rejected too.
    """
    if end is None:
        end = len(data)
    pos = offset
    if pos >= end:
        raise MalformedEncoding(pos, "unexpected end of data, expected a tag")

    identifier = data[pos]
    pos += 1
    tag_class = identifier >> 6
    constructed = bool(identifier & 0x20)
    number = identifier & 0x1F
    if number == 0x1F:
        number = 0
        while True:
            if pos >= end:
                raise MalformedEncoding(pos, "truncated high tag number")
            b = data[pos]
            pos += 1
            number = (number << 7) | (b & 0x7F)
            if not b & 0x80:
                break

    if pos >= end:
        raise MalformedEncoding(pos, "truncated length field")
    length_offset = pos
    first = data[pos]
    pos += 1
    if first < 0x80:
        length = first
    elif first == 0x80:
        raise MalformedEncoding(length_offset, "indefinite length encoding is not valid DER")
    elif first == 0xFF:
        raise MalformedEncoding(length_offset, "reserved length octet 0xff")
    else:
        count = first & 0x7F
        if pos + count > end:
            raise MalformedEncoding(
                length_offset, f"truncated length field, {count} length octets declared"
            )
        length_bytes = data[pos:pos + count]
        length = int.from_bytes(length_bytes, "big")
        if strict and (length_bytes[0] == 0 or length < 0x80):
            raise MalformedEncoding(length_offset, "non-minimal length encoding")
        pos += count

    if length > end - pos:
        raise MalformedEncoding(
            length_offset, f"length {length} overruns the {end - pos} bytes remaining"
        )
    return Tlv(data, offset, tag_class, constructed, number, pos, pos + length)


def read_single(data, strict=False):
    """Read a TLV that must span ``data`` exactly, nothing trailing."""
    tlv = read_tlv(data, 0, len(data), strict)
    if tlv.end != len(data):
        raise MalformedEncoding(tlv.end, f"{len(data) - tlv.end} trailing bytes after the outer element")
    return tlv


def iter_children(tlv, strict=False):
    if not tlv.constructed:
        raise MalformedEncoding(tlv.offset, f"{tlv.describe()} is not a constructed element")
    pos = tlv.start
    while pos < tlv.end:
        child = read_tlv(tlv.data, pos, tlv.end, strict)
        yield child
        pos = child.end


def children(tlv, strict=False):
    return list(iter_children(tlv, strict))


def expect(tlv, number, tag_class=UNIVERSAL, what=None):
    if tlv.tag_class != tag_class or tlv.number != number:
        if what is None:
            what = UNIVERSAL_NAMES.get(number, f"tag {number}") if tag_class == UNIVERSAL else f"[{number}]"
        raise MalformedEncoding(tlv.offset, f"expected {what}, found {tlv.describe()}")
    return tlv


def decode_integer(tlv, strict=False):
    expect(tlv, INTEGER)
    value = tlv.value
    if not value:
        raise MalformedEncoding(tlv.offset, "empty INTEGER")
    if strict and len(value) > 1:
        if (value[0] == 0x00 and value[1] < 0x80) or (value[0] == 0xFF and value[1] >= 0x80):
            raise MalformedEncoding(tlv.offset, "non-canonical INTEGER encoding")
    return int.from_bytes(value, "big", signed=True)


def decode_boolean(tlv, strict=False):
    expect(tlv, BOOLEAN)
    value = tlv.value
    if len(value) != 1:
        raise MalformedEncoding(tlv.offset, f"BOOLEAN must be one byte, got {len(value)}")
    if strict and value[0] not in (0x00, 0xFF):
        raise MalformedEncoding(tlv.offset, "non-canonical BOOLEAN encoding")
    return value[0] != 0


def decode_oid(tlv):
    """Return the dotted-decimal form of an OBJECT IDENTIFIER."""
    expect(tlv, OBJECT_IDENTIFIER)
    value = tlv.value
    if not value:
        raise MalformedEncoding(tlv.offset, "empty OBJECT IDENTIFIER")
    if value[-1] & 0x80:
        raise MalformedEncoding(tlv.end - 1, "truncated OBJECT IDENTIFIER subidentifier")

    arcs = []
    acc = 0
    arc_start = True
    for i, b in enumerate(value):
        if arc_start and b == 0x80:
            raise MalformedEncoding(tlv.start + i, "non-minimal OBJECT IDENTIFIER subidentifier")
        acc = (acc << 7) | (b & 0x7F)
        arc_start = not b & 0x80
        if arc_start:
            arcs.append(acc)
            acc = 0

    first = arcs[0]
    if first < 40:
        head = [0, first]
    elif first < 80:
        head = [1, first - 40]
    else:
        head = [2, first - 80]
    return ".".join(str(arc) for arc in head + arcs[1:])


def decode_bit_string(tlv):
    """Return ``(unused_bits, payload)``."""
    expect(tlv, BIT_STRING)
    value = tlv.value
    if not value:
        raise MalformedEncoding(tlv.offset, "empty BIT STRING")
    unused = value[0]
    if unused > 7 or (unused and len(value) == 1):
        raise MalformedEncoding(tlv.start, f"invalid unused-bits count {unused}")
    return unused, value[1:]


def decode_octet_string(tlv):
    expect(tlv, OCTET_STRING)
    return tlv.value


def decode_string(tlv):
    codec = STRING_CODECS.get(tlv.number) if tlv.tag_class == UNIVERSAL else None
    if codec is None:
        raise MalformedEncoding(tlv.offset, f"expected a character string, found {tlv.describe()}")
    try:
        return tlv.value.decode(codec)
    except UnicodeDecodeError as e:
        raise MalformedEncoding(tlv.start + e.start, f"invalid {tlv.describe()} contents") from e


def is_string(tlv):
    return tlv.tag_class == UNIVERSAL and tlv.number in STRING_CODECS


def decode_time(tlv):
    """Decode UTCTime or GeneralizedTime into an aware UTC datetime."""
    if not (tlv.is_universal(UTC_TIME) or tlv.is_universal(GENERALIZED_TIME)):
        raise MalformedEncoding(tlv.offset, f"expected a time value, found {tlv.describe()}")
    try:
        text = tlv.value.decode("ascii")
    except UnicodeDecodeError as e:
        raise MalformedEncoding(tlv.start, "non-ASCII time value") from e

    match = _TIME_PATTERN.match(text)
    expected_year_digits = 2 if tlv.number == UTC_TIME else 4
    if not match or len(match.group(1)) != expected_year_digits:
        raise MalformedEncoding(tlv.start, f"invalid {tlv.describe()} value {text!r}")

    year = int(match.group(1))
    if tlv.number == UTC_TIME:
        # RFC 5280: two-digit years 50-99 are 19xx, 00-49 are 20xx
        year += 1900 if year >= 50 else 2000
    month, day, hour, minute, second = (int(g) for g in match.groups()[1:])
    try:
        return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    except ValueError as e:
        raise MalformedEncoding(tlv.start, f"invalid {tlv.describe()} value {text!r}: {e}") from e
