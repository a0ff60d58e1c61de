"""
Tests for the certificate fact views.
"""
import unittest

from cryptography import x509

import certfactory
from cert_decoder import SAN_DNS, SubjectAltName, ValidityWindow, decode
from cert_info import full_text_dump, get_cert_info, subject_alt_names, validity_window

DUMP_LABELS = (
    "Version:",
    "Serial Number:",
    "Signature Algorithm:",
    "Issuer:",
    "Validity:",
    "Not Before:",
    "Not After :",
    "Subject:",
    "Subject Public Key Info:",
    "X509v3 Extensions:",
    "Subject Alternative Names:",
    "SHA256 Fingerprint:",
)


class TestFullTextDump(unittest.TestCase):

    def setUp(self):
        self.der = certfactory.to_der(certfactory.build_certificate(sans=("example.com", "example.net")))

    def test_dump_is_deterministic(self):
        self.assertEqual(full_text_dump(decode(self.der)), full_text_dump(decode(self.der)))

    def test_field_order(self):
        dump = full_text_dump(decode(self.der))
        positions = [dump.index(label) for label in DUMP_LABELS]
        self.assertEqual(positions, sorted(positions))

    def test_field_values(self):
        dump = full_text_dump(decode(self.der))
        self.assertIn("    Version: 3 (0x2)", dump)
        self.assertIn("    Serial Number: 4660 (0x1234)", dump)
        self.assertIn("    Signature Algorithm: ecdsa-with-SHA256", dump)
        self.assertIn("    Issuer: C=US, O=Test CA Org, CN=Test CA", dump)
        self.assertIn("        Not Before: 2030-01-01T00:00:00Z", dump)
        self.assertIn("        Not After : 2031-01-01T00:00:00Z", dump)
        self.assertIn("        Parameters: prime256v1", dump)
        self.assertIn("        Key Size: 256 bit", dump)
        self.assertIn("            DNS:example.com, DNS:example.net", dump)
        self.assertIn("        1: DNS:example.com\n        2: DNS:example.net", dump)

    def test_no_extensions(self):
        dump = full_text_dump(decode(certfactory.to_der(certfactory.build_certificate(sans=None))))
        self.assertIn("    X509v3 Extensions:\n        <none>", dump)
        self.assertIn("    Subject Alternative Names:\n        <none>", dump)

    def test_unparsed_critical_extension_warning(self):
        unknown = x509.UnrecognizedExtension(certfactory.UNKNOWN_EXTENSION_OID, b"\xde\xad\xbe\xef")
        cert = certfactory.build_certificate(extensions=[(unknown, True)])
        dump = full_text_dump(decode(certfactory.to_der(cert)))
        self.assertIn("        1.3.6.1.4.1.55555.1: critical, unparsed\n            de:ad:be:ef", dump)
        self.assertIn("    WARNING: critical extension 1.3.6.1.4.1.55555.1 is not understood", dump)


class TestProjections(unittest.TestCase):

    def test_subject_alt_names(self):
        parsed = decode(certfactory.to_der(certfactory.build_certificate(sans=("b.example", "a.example"))))
        self.assertEqual(
            subject_alt_names(parsed),
            (SubjectAltName(SAN_DNS, "b.example"), SubjectAltName(SAN_DNS, "a.example")),
        )

    def test_subject_alt_names_without_extension(self):
        parsed = decode(certfactory.to_der(certfactory.build_certificate(sans=None)))
        self.assertEqual(subject_alt_names(parsed), ())

    def test_validity_window(self):
        parsed = decode(certfactory.to_der(certfactory.build_certificate()))
        self.assertEqual(
            validity_window(parsed), ValidityWindow(certfactory.NOT_BEFORE, certfactory.NOT_AFTER)
        )

    def test_get_cert_info(self):
        cert = certfactory.build_certificate()
        info = get_cert_info(decode(certfactory.to_der(cert)))
        self.assertEqual(info["serial"], "1234")
        self.assertEqual(info["subject"], "C=US, O=Example Org, CN=example.com")
        self.assertEqual(info["not_after"], "2031-01-01T00:00:00Z")
        self.assertEqual(info["subject_alt_names"], ["DNS:example.com"])
        self.assertEqual(info["unhandled_critical_extensions"], [])
        self.assertEqual(info["fingerprint_sha256"], cert.fingerprint(certfactory.hashes.SHA256()).hex())


if __name__ == '__main__':
    unittest.main()
