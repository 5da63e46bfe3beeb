import unittest

from site_deployer.security import DecryptionFailed, MissingEncryptionKey, SecretCipher

KEY_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


class SecretCipherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.cipher = SecretCipher.from_hex(KEY_HEX)

    def test_token_layout_is_iv_tag_ciphertext_hex(self) -> None:
        token = self.cipher.encrypt("hunter2")
        iv, tag, ciphertext = token.split(":")
        self.assertEqual(len(bytes.fromhex(iv)), 16)
        self.assertEqual(len(bytes.fromhex(tag)), 16)
        self.assertEqual(len(bytes.fromhex(ciphertext)), len("hunter2"))
        self.assertEqual(self.cipher.decrypt(token), "hunter2")

    def test_fresh_iv_per_encryption(self) -> None:
        self.assertNotEqual(self.cipher.encrypt("same"), self.cipher.encrypt("same"))

    def test_tampered_ciphertext_is_rejected(self) -> None:
        iv, tag, ciphertext = self.cipher.encrypt("secret").split(":")
        flipped = format(int(ciphertext[:2], 16) ^ 0x01, "02x") + ciphertext[2:]
        with self.assertRaises(DecryptionFailed):
            self.cipher.decrypt(f"{iv}:{tag}:{flipped}")

    def test_wrong_key_is_rejected(self) -> None:
        token = self.cipher.encrypt("secret")
        other = SecretCipher(bytes(32))
        with self.assertRaises(DecryptionFailed):
            other.decrypt(token)

    def test_malformed_tokens(self) -> None:
        for token in ("", "abc", "a:b", "zz:zz:zz", "00:" + "00" * 16 + ":00"):
            with self.subTest(token=token):
                with self.assertRaises(DecryptionFailed):
                    self.cipher.decrypt(token)

    def test_key_must_be_32_bytes(self) -> None:
        with self.assertRaises(MissingEncryptionKey):
            SecretCipher(b"short")
        with self.assertRaises(MissingEncryptionKey):
            SecretCipher.from_hex("not-hex")

    def test_from_env_requires_key(self) -> None:
        with self.assertRaises(MissingEncryptionKey):
            SecretCipher.from_env(environ={})
        cipher = SecretCipher.from_env(environ={"SITE_DEPLOYER_ENCRYPTION_KEY": KEY_HEX})
        self.assertEqual(cipher.decrypt(self.cipher.encrypt("x")), "x")


if __name__ == "__main__":
    unittest.main()
