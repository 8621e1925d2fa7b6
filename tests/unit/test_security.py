"""
Unit tests for code generation, password hashing and signature checks
"""

import base64
import re

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519

from secure_credentials.utils.security import (
    constant_time_compare,
    generate_backup_codes,
    generate_challenge_id,
    generate_nonce,
    generate_verification_code,
    hash_backup_code,
    hash_password,
    mask_email,
    mask_ip,
    normalize_backup_code,
    verify_password,
)
from secure_credentials.utils.signatures import load_public_key, verify_signature


class TestVerificationCodes:
    """Test verification code and identifier generation"""

    def test_code_is_six_digits_in_range(self):
        for _ in range(500):
            code = generate_verification_code()
            assert re.fullmatch(r"\d{6}", code)
            assert 100000 <= int(code) <= 999999

    def test_codes_vary(self):
        codes = {generate_verification_code() for _ in range(200)}
        assert len(codes) > 150

    def test_challenge_ids_are_unique_uuids(self):
        ids = {generate_challenge_id() for _ in range(1000)}
        assert len(ids) == 1000
        assert all(re.fullmatch(r"[0-9a-f-]{36}", i) for i in ids)

    def test_nonce_is_url_safe(self):
        nonce = generate_nonce()
        assert re.fullmatch(r"[A-Za-z0-9_-]+", nonce)
        assert len(nonce) >= 40


class TestBackupCodes:
    """Test backup code format and hashing"""

    def test_format(self):
        codes = generate_backup_codes(8)
        assert len(codes) == 8
        assert all(re.fullmatch(r"[0-9A-F]{4}-[0-9A-F]{4}", c) for c in codes)

    def test_hash_ignores_case_and_separators(self):
        assert hash_backup_code("ABCD-1234") == hash_backup_code("abcd1234")
        assert hash_backup_code("ABCD-1234") == hash_backup_code(" abcd 1234 ")
        assert normalize_backup_code("ab-cd-12-34") == "ABCD1234"

    def test_hash_is_not_the_code(self):
        digest = hash_backup_code("ABCD-1234")
        assert len(digest) == 64
        assert "ABCD" not in digest


class TestPasswords:
    """Test password hashing"""

    def test_hash_and_verify(self):
        hashed = hash_password("Str0ng!Pass")
        assert hashed.startswith("$pbkdf2-sha512$")
        assert verify_password("Str0ng!Pass", hashed)
        assert not verify_password("wrong", hashed)

    def test_hashes_are_salted(self):
        assert hash_password("same") != hash_password("same")

    def test_empty_hash_never_verifies(self):
        assert verify_password("anything", "") is False


class TestHelpers:
    """Test comparison and masking helpers"""

    def test_constant_time_compare(self):
        assert constant_time_compare("123456", "123456")
        assert not constant_time_compare("123456", "654321")
        assert not constant_time_compare(None, "123456")

    def test_mask_email(self):
        assert mask_email("alice@x.com") == "a***e@x.com"
        assert mask_email("al@x.com") == "**@x.com"

    def test_mask_ip(self):
        assert mask_ip("203.0.113.7") == "203.0.113.xxx"
        assert mask_ip("") == ""


class TestSignatures:
    """Test device signature verification"""

    def test_ed25519(self, ed25519_keypair, signer):
        private_key, public_pem = ed25519_keypair
        assert verify_signature(public_pem, "nonce-1", signer(private_key, "nonce-1"))
        assert not verify_signature(public_pem, "nonce-2", signer(private_key, "nonce-1"))

    def test_ecdsa_p256(self):
        private_key = ec.generate_private_key(ec.SECP256R1())
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()
        signature = private_key.sign(b"nonce", ec.ECDSA(hashes.SHA256()))
        assert verify_signature(public_pem, "nonce", base64.b64encode(signature).decode())

    def test_signature_from_other_key(self, ed25519_keypair, signer):
        _, public_pem = ed25519_keypair
        other = ed25519.Ed25519PrivateKey.generate()
        assert not verify_signature(public_pem, "nonce", signer(other, "nonce"))

    def test_garbage_signature(self, ed25519_keypair):
        _, public_pem = ed25519_keypair
        assert not verify_signature(public_pem, "nonce", "not base64!!")

    def test_unusable_key(self):
        assert not verify_signature("not a key", "nonce", base64.b64encode(b"x" * 64).decode())
        with pytest.raises(ValueError):
            load_public_key("not a key")
