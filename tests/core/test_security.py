"""
Tests for hashing, code generation and staff JWT helpers.
"""

from admissions.core.security import (
    codes_match,
    create_access_token,
    create_refresh_token,
    decode_token,
    generate_numeric_code,
    generate_opaque_token,
    hash_code,
    hash_password,
    hash_token,
    verify_password,
)


class TestCodes:
    def test_numeric_code_has_requested_length(self):
        for _ in range(50):
            code = generate_numeric_code(6)
            assert len(code) == 6
            assert code.isdigit()

    def test_opaque_tokens_are_unique(self):
        assert generate_opaque_token() != generate_opaque_token()

    def test_hash_token_is_deterministic(self):
        assert hash_token("abc") == hash_token("abc")
        assert hash_token("abc") != hash_token("abd")
        assert len(hash_token("abc")) == 64

    def test_code_hash_is_scoped(self):
        """The same code under different identifiers hashes differently."""
        assert hash_code("a@example.com", "123456") != hash_code("b@example.com", "123456")

    def test_codes_match(self):
        stored = hash_code("a@example.com", "123456")
        assert codes_match(stored, "a@example.com", "123456")
        assert not codes_match(stored, "a@example.com", "654321")
        assert not codes_match(stored, "b@example.com", "123456")


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("correct horse battery")
        assert hashed != "correct horse battery"
        assert verify_password("correct horse battery", hashed)
        assert not verify_password("wrong", hashed)

    def test_malformed_hash_does_not_verify(self):
        assert not verify_password("anything", "not-a-bcrypt-hash")


class TestJwt:
    def test_access_token_round_trip(self):
        token = create_access_token("user-1", {"role": "admin"})
        payload = decode_token(token)
        assert payload["sub"] == "user-1"
        assert payload["type"] == "access"
        assert payload["role"] == "admin"

    def test_refresh_token_type(self):
        payload = decode_token(create_refresh_token("user-1"))
        assert payload["type"] == "refresh"

    def test_tampered_token_is_rejected(self):
        header, payload, _ = create_access_token("user-1").split(".")
        assert decode_token(f"{header}.{payload}.bm90LWEtc2lnbmF0dXJl") is None
