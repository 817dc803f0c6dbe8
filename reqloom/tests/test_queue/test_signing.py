"""Unit tests for delivery callback signatures."""

import pytest

from reqloom.core.exceptions import SignatureError
from reqloom.core.queue import sign_body, verify_signature

BODY = b'{"analysis_id":"a","owner_id":"u","text":"t"}'
NOW = 1_700_000_000


class TestSignBody:

    def test_header_format(self):
        header = sign_body(BODY, "k1", timestamp=NOW)
        ts, mac = header.split(",")
        assert ts == f"t={NOW}"
        assert mac.startswith("v1=") and len(mac) == 3 + 64

    def test_str_and_bytes_agree(self):
        assert sign_body(BODY.decode(), "k1", NOW) == sign_body(BODY, "k1", NOW)

    def test_requires_key(self):
        with pytest.raises(SignatureError):
            sign_body(BODY, "")


class TestVerifySignature:

    def test_valid(self):
        header = sign_body(BODY, "k1", NOW)
        assert verify_signature(BODY, header, ["k1"], now=NOW + 10) == NOW

    def test_next_key_accepted_during_rotation(self):
        header = sign_body(BODY, "k2", NOW)
        assert verify_signature(BODY, header, ["k1", "k2"], now=NOW) == NOW

    def test_tampered_body(self):
        header = sign_body(BODY, "k1", NOW)
        with pytest.raises(SignatureError, match="mismatch"):
            verify_signature(BODY + b" ", header, ["k1"], now=NOW)

    def test_wrong_key(self):
        header = sign_body(BODY, "other", NOW)
        with pytest.raises(SignatureError):
            verify_signature(BODY, header, ["k1", None], now=NOW)

    def test_expired(self):
        header = sign_body(BODY, "k1", NOW)
        with pytest.raises(SignatureError, match="tolerance"):
            verify_signature(BODY, header, ["k1"], max_age_seconds=60, now=NOW + 61)

    def test_age_check_can_be_disabled(self):
        header = sign_body(BODY, "k1", NOW)
        assert verify_signature(BODY, header, ["k1"], max_age_seconds=None, now=NOW + 10**6) == NOW

    @pytest.mark.parametrize("header", [None, "", "v1=abc", "t=nope,v1=abc", f"t={NOW}"])
    def test_malformed_header(self, header):
        with pytest.raises(SignatureError):
            verify_signature(BODY, header, ["k1"], now=NOW)

    def test_no_keys_configured(self):
        header = sign_body(BODY, "k1", NOW)
        with pytest.raises(SignatureError):
            verify_signature(BODY, header, [None, ""], now=NOW)
