import unittest

from conduittools.security.hash_tools import compute_digest, digest_matches, is_valid_digest

EMPTY_SHA256 = '0xe3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'

class TestHashTools(unittest.TestCase):
    def test_compute_digest(self):
        self.assertEqual(compute_digest(''), EMPTY_SHA256)
        self.assertEqual(compute_digest(b''), EMPTY_SHA256)
        self.assertEqual(len(compute_digest("any condition")), 66)
        self.assertNotEqual(compute_digest("a"), compute_digest("b"))

    def test_is_valid_digest(self):
        self.assertTrue(is_valid_digest(EMPTY_SHA256))
        self.assertTrue(is_valid_digest(EMPTY_SHA256.upper().replace('0X', '0x')))
        for digest in (None, '', '0x', EMPTY_SHA256[2:], EMPTY_SHA256 + '00', '0x' + 'g' * 64, 12345):
            with self.subTest(digest=digest):
                self.assertFalse(is_valid_digest(digest))

    def test_digest_matches(self):
        digest = compute_digest("Deliver the report")
        self.assertTrue(digest_matches("Deliver the report", digest))
        self.assertTrue(digest_matches("Deliver the report", digest.upper().replace('0X', '0x')))
        self.assertFalse(digest_matches("Deliver the report.", digest))
        self.assertFalse(digest_matches("Deliver the report", 'not-a-digest'))

if __name__ == '__main__':
    unittest.main()
