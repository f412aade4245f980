"""Tests for Shopify HMAC verification."""

import base64

from storehook.services.signature import compute_signature, verify_shopify_hmac

SECRET = "shpss_test_secret"
BODY = b'{"id": 820001, "total_price": "125.50"}'


class TestComputeSignature:
    def test_is_base64_sha256(self):
        sig = compute_signature(BODY, SECRET)
        assert len(base64.b64decode(sig)) == 32

    def test_known_vector(self):
        """Well-known HMAC-SHA256 test vector."""
        sig = compute_signature(
            b"The quick brown fox jumps over the lazy dog", "key"
        )
        assert base64.b64decode(sig).hex() == (
            "f7bc83f430538424b13298e6aa6fb143ef4d59a14946175997479dbc2d1a3cd8"
        )


class TestVerifyShopifyHmac:
    """verify_shopify_hmac fails closed on anything but an exact match."""

    def test_valid_signature(self):
        assert verify_shopify_hmac(BODY, compute_signature(BODY, SECRET), SECRET)

    def test_surrounding_whitespace_tolerated(self):
        sig = f"  {compute_signature(BODY, SECRET)}\n"
        assert verify_shopify_hmac(BODY, sig, SECRET)

    def test_one_byte_change_rejected(self):
        sig = compute_signature(BODY, SECRET)
        assert not verify_shopify_hmac(BODY.replace(b"125.50", b"125.51"), sig, SECRET)

    def test_reserialized_json_rejected(self):
        """Same JSON, different bytes -> different digest."""
        sig = compute_signature(BODY, SECRET)
        assert not verify_shopify_hmac(b'{"id":820001,"total_price":"125.50"}', sig, SECRET)

    def test_wrong_secret_rejected(self):
        sig = compute_signature(BODY, "another_secret")
        assert not verify_shopify_hmac(BODY, sig, SECRET)

    def test_missing_header(self):
        assert not verify_shopify_hmac(BODY, None, SECRET)
        assert not verify_shopify_hmac(BODY, "", SECRET)

    def test_not_base64(self):
        assert not verify_shopify_hmac(BODY, "%%%not-base64%%%", SECRET)

    def test_wrong_length_digest(self):
        short = base64.b64encode(b"too short").decode()
        assert not verify_shopify_hmac(BODY, short, SECRET)

    def test_unconfigured_secret_rejects_everything(self):
        sig = compute_signature(BODY, SECRET)
        assert not verify_shopify_hmac(BODY, sig, None)
        assert not verify_shopify_hmac(BODY, sig, "")

    def test_empty_body_can_be_signed(self):
        assert verify_shopify_hmac(b"", compute_signature(b"", SECRET), SECRET)
