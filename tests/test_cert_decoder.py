"""
Tests for X.509 decoding.
"""
import ipaddress
import unittest
from datetime import datetime, timezone

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID

import certfactory
from cert_decoder import (
    OID_BASIC_CONSTRAINTS,
    OID_SUBJECT_ALT_NAME,
    SAN_DIRNAME,
    SAN_DNS,
    SAN_EMAIL,
    SAN_IP,
    SAN_OTHER,
    SAN_URI,
    BasicConstraints,
    NameAttribute,
    SubjectAltName,
    decode,
    format_name,
)
from cert_errors import MalformedEncoding


class TestDecodeFields(unittest.TestCase):

    def setUp(self):
        self.cert = certfactory.build_certificate(
            sans=("example.com", "www.example.com"), ip_sans=("192.0.2.1", "2001:db8::1")
        )
        self.der = certfactory.to_der(self.cert)
        self.parsed = decode(self.der)

    def test_basic_fields(self):
        self.assertEqual(self.parsed.version, 3)
        self.assertEqual(self.parsed.serial_number, 0x1234)
        self.assertEqual(self.parsed.signature_algorithm, "1.2.840.10045.4.3.2")
        self.assertEqual(self.parsed.der, self.der)
        self.assertTrue(self.parsed.signature)

    def test_names_keep_encoded_order(self):
        self.assertEqual(
            self.parsed.subject,
            (
                NameAttribute("2.5.4.6", "US"),
                NameAttribute("2.5.4.10", "Example Org"),
                NameAttribute("2.5.4.3", "example.com"),
            ),
        )
        self.assertEqual(format_name(self.parsed.issuer), "C=US, O=Test CA Org, CN=Test CA")

    def test_validity(self):
        self.assertEqual(self.parsed.validity.not_before, certfactory.NOT_BEFORE)
        self.assertEqual(self.parsed.validity.not_after, certfactory.NOT_AFTER)
        self.assertEqual(self.parsed.not_before.tzinfo, timezone.utc)

    def test_public_key(self):
        key = self.parsed.public_key
        self.assertEqual(key.algorithm, "1.2.840.10045.2.1")
        self.assertEqual(key.parameters, "1.2.840.10045.3.1.7")
        self.assertEqual(key.key_size, 256)
        self.assertEqual(len(key.key), 65)

    def test_rsa_key_size(self):
        rsa_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        parsed = decode(certfactory.to_der(certfactory.build_certificate(key=rsa_key)))
        self.assertEqual(parsed.public_key.algorithm, "1.2.840.113549.1.1.1")
        self.assertIsNone(parsed.public_key.parameters)
        self.assertEqual(parsed.public_key.key_size, 2048)

    def test_sans_in_encoded_order(self):
        self.assertEqual(
            self.parsed.sans,
            (
                SubjectAltName(SAN_DNS, "example.com"),
                SubjectAltName(SAN_DNS, "www.example.com"),
                SubjectAltName(SAN_IP, ipaddress.ip_address("192.0.2.1")),
                SubjectAltName(SAN_IP, ipaddress.ip_address("2001:db8::1")),
            ),
        )
        self.assertEqual(str(self.parsed.sans[2]), "IP Address:192.0.2.1")
        ext = self.parsed.extensions[OID_SUBJECT_ALT_NAME]
        self.assertTrue(ext.understood)
        self.assertFalse(ext.critical)

    def test_generalized_time_after_2049(self):
        cert = certfactory.build_certificate(not_after=datetime(2055, 6, 1, tzinfo=timezone.utc))
        parsed = decode(certfactory.to_der(cert))
        self.assertEqual(parsed.not_after, datetime(2055, 6, 1, tzinfo=timezone.utc))

    def test_strict_mode_accepts_canonical_certificate(self):
        parsed = decode(self.der, strict=True)
        self.assertEqual(parsed.serial_number, self.parsed.serial_number)

    def test_strict_mode_rejects_padded_serial(self):
        der = certfactory.der_with_padded_serial()
        self.assertEqual(decode(der).serial_number, 0x1234)
        with self.assertRaises(MalformedEncoding) as ctx:
            decode(der, strict=True)
        self.assertIn("non-canonical INTEGER", str(ctx.exception))

    def test_parsed_certificate_is_hashable(self):
        again = decode(self.der)
        self.assertEqual(hash(self.parsed), hash(again))
        self.assertEqual(len({self.parsed, again}), 1)

    def test_accepts_raw_certificate_tuple(self):
        from cert_decoder import FROM_FILE, RawCertificate
        parsed = decode(RawCertificate(self.der, FROM_FILE, "cert.der"))
        self.assertEqual(parsed.serial_number, 0x1234)


class TestExtensions(unittest.TestCase):

    def test_no_san_extension(self):
        parsed = decode(certfactory.to_der(certfactory.build_certificate(sans=None)))
        self.assertEqual(parsed.sans, ())
        self.assertNotIn(OID_SUBJECT_ALT_NAME, parsed.extensions)

    def test_unknown_critical_extension_is_kept(self):
        unknown = x509.UnrecognizedExtension(certfactory.UNKNOWN_EXTENSION_OID, b"\x04\x02hi")
        parsed = decode(certfactory.to_der(certfactory.build_certificate(extensions=[(unknown, True)])))
        ext = parsed.extensions["1.3.6.1.4.1.55555.1"]
        self.assertTrue(ext.critical)
        self.assertFalse(ext.understood)
        self.assertEqual(ext.value, b"\x04\x02hi")
        self.assertEqual(parsed.unhandled_critical, ("1.3.6.1.4.1.55555.1",))

    def test_unknown_non_critical_extension_is_not_flagged(self):
        unknown = x509.UnrecognizedExtension(certfactory.UNKNOWN_EXTENSION_OID, b"\x05\x00")
        parsed = decode(certfactory.to_der(certfactory.build_certificate(extensions=[(unknown, False)])))
        self.assertIn("1.3.6.1.4.1.55555.1", parsed.extensions)
        self.assertEqual(parsed.unhandled_critical, ())

    def test_understood_extensions(self):
        key_usage = x509.KeyUsage(
            digital_signature=True,
            content_commitment=False,
            key_encipherment=True,
            data_encipherment=False,
            key_agreement=False,
            key_cert_sign=False,
            crl_sign=False,
            encipher_only=False,
            decipher_only=False,
        )
        extensions = [
            (x509.BasicConstraints(ca=True, path_length=0), True),
            (key_usage, True),
            (x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), False),
            (x509.SubjectKeyIdentifier(b"\x01\x02\x03"), False),
        ]
        parsed = decode(certfactory.to_der(certfactory.build_certificate(extensions=extensions)))
        self.assertEqual(parsed.extensions[OID_BASIC_CONSTRAINTS].decoded, BasicConstraints(True, 0))
        self.assertEqual(parsed.extensions["2.5.29.15"].decoded, ("Digital Signature", "Key Encipherment"))
        self.assertEqual(parsed.extensions["2.5.29.37"].decoded, ("1.3.6.1.5.5.7.3.1",))
        self.assertEqual(parsed.extensions["2.5.29.14"].decoded, b"\x01\x02\x03")
        self.assertEqual(parsed.unhandled_critical, ())

    def test_extension_order_is_preserved(self):
        bc = (x509.BasicConstraints(ca=False, path_length=None), False)
        first = decode(certfactory.to_der(certfactory.build_certificate(extensions=[bc], san_first=True)))
        second = decode(certfactory.to_der(certfactory.build_certificate(extensions=[bc], san_first=False)))
        self.assertEqual(list(first.extensions), [OID_SUBJECT_ALT_NAME, OID_BASIC_CONSTRAINTS])
        self.assertEqual(list(second.extensions), [OID_BASIC_CONSTRAINTS, OID_SUBJECT_ALT_NAME])

    def test_other_general_name_kinds(self):
        other_oid = x509.ObjectIdentifier("1.3.6.1.4.1.55555.3")
        names = x509.SubjectAlternativeName([
            x509.RFC822Name("admin@example.com"),
            x509.UniformResourceIdentifier("https://example.com/"),
            x509.DirectoryName(certfactory.make_name("dir")),
            x509.OtherName(other_oid, b"\x0c\x03abc"),
            x509.RegisteredID(other_oid),
        ])
        cert = certfactory.build_certificate(sans=None, extensions=[(names, False)])
        sans = decode(certfactory.to_der(cert)).sans
        self.assertEqual(sans[0], SubjectAltName(SAN_EMAIL, "admin@example.com"))
        self.assertEqual(sans[1], SubjectAltName(SAN_URI, "https://example.com/"))
        self.assertEqual(sans[2].kind, SAN_DIRNAME)
        self.assertEqual(str(sans[2]), "DirName:C=US, O=Example Org, CN=dir")
        self.assertEqual(sans[3], SubjectAltName(SAN_OTHER, b"\x0c\x03abc", "1.3.6.1.4.1.55555.3"))
        self.assertEqual(sans[4], SubjectAltName(SAN_OTHER, b"", "1.3.6.1.4.1.55555.3"))

    def test_unknown_attribute_type_is_kept(self):
        extra = [x509.NameAttribute(certfactory.UNKNOWN_ATTRIBUTE_OID, "custom")]
        cert = certfactory.build_certificate(subject=certfactory.make_name(extra=extra))
        parsed = decode(certfactory.to_der(cert))
        self.assertIn(NameAttribute("1.3.6.1.4.1.55555.2", "custom"), parsed.subject)
        self.assertIn("1.3.6.1.4.1.55555.2=custom", format_name(parsed.subject))


class TestMalformed(unittest.TestCase):

    def setUp(self):
        self.der = certfactory.to_der(certfactory.build_certificate())

    def test_truncated_certificate(self):
        with self.assertRaises(MalformedEncoding) as ctx:
            decode(self.der[:10])
        self.assertIsInstance(ctx.exception.offset, int)
        self.assertIn("byte offset", str(ctx.exception))

    def test_trailing_bytes(self):
        with self.assertRaises(MalformedEncoding) as ctx:
            decode(self.der + b"\x00")
        self.assertEqual(ctx.exception.offset, len(self.der))

    def test_empty_input(self):
        with self.assertRaises(MalformedEncoding) as ctx:
            decode(b"")
        self.assertEqual(ctx.exception.offset, 0)

    def test_not_a_sequence(self):
        with self.assertRaises(MalformedEncoding):
            decode(b"\x04\x03abc")

    def test_not_before_after_not_after_fails(self):
        der = certfactory.der_with_validity(certfactory.NOT_AFTER_DER, certfactory.NOT_BEFORE_DER)
        with self.assertRaises(MalformedEncoding) as ctx:
            decode(der)
        self.assertIn("notBefore", ctx.exception.reason)

    def test_not_before_equal_to_not_after_decodes(self):
        der = certfactory.der_with_validity(certfactory.NOT_BEFORE_DER, certfactory.NOT_BEFORE_DER)
        parsed = decode(der)
        self.assertEqual(parsed.not_before, parsed.not_after)


if __name__ == '__main__':
    unittest.main()
