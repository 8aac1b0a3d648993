# tests/services/test_init_data.py
"""Tests for Telegram initData signature verification."""

from __future__ import annotations

import json
from urllib.parse import parse_qsl, urlencode

import pytest

from showpls.core.errors import (
    Expired,
    InvalidCredentialFormat,
    MissingCredential,
    MissingSignature,
    SignatureMismatch,
)
from showpls.core.settings import Settings
from showpls.services.telegram_auth import (
    DEV_PLACEHOLDER_USER,
    DevInitDataVerifier,
    InitDataVerifier,
    build_data_check_string,
    build_init_data_verifier,
    derive_secret_key,
    is_valid_init_data,
    parse_init_data,
    sign_init_data,
    verify_init_data,
)
from tests.conftest import TEST_BOT_TOKEN, build_init_data

NOW = 1_700_000_000
USER = {"id": 42, "first_name": "Ann", "username": "ann", "language_code": "en"}


def _tamper(raw: str, key: str, value: str) -> str:
    fields = dict(parse_qsl(raw, keep_blank_values=True))
    fields[key] = value
    return urlencode(fields)


class TestSigning:
    """Secret derivation and data-check string construction."""

    def test_data_check_string_is_sorted_and_excludes_hash(self) -> None:
        fields = {"user": "{}", "auth_date": "1", "hash": "abc", "query_id": "q"}
        assert build_data_check_string(fields) == "auth_date=1\nquery_id=q\nuser={}"

    def test_secret_key_depends_on_bot_token(self) -> None:
        assert derive_secret_key("a") != derive_secret_key("b")
        assert len(derive_secret_key(TEST_BOT_TOKEN)) == 32

    def test_signature_is_lowercase_hex(self) -> None:
        signature = sign_init_data({"auth_date": "1"}, TEST_BOT_TOKEN)
        assert len(signature) == 64
        assert signature == signature.lower()


class TestVerifyInitData:
    """Accept/reject rules for raw initData strings."""

    def test_valid_init_data_returns_user(self) -> None:
        raw = build_init_data(USER, auth_date=NOW - 10)
        verified = verify_init_data(raw, TEST_BOT_TOKEN, 3600, now=NOW)

        assert verified.auth_date == NOW - 10
        assert verified.user is not None
        assert verified.user.id == 42
        assert verified.user.username == "ann"
        assert verified.fields["query_id"]

    def test_valid_init_data_without_user(self) -> None:
        raw = build_init_data(None, auth_date=NOW)
        verified = verify_init_data(raw, TEST_BOT_TOKEN, 3600, now=NOW)
        assert verified.user is None

    def test_unicode_user_fields_are_signed_as_utf8(self) -> None:
        raw = build_init_data({"id": 7, "first_name": "Влад ✨"}, auth_date=NOW)
        verified = verify_init_data(raw, TEST_BOT_TOKEN, 3600, now=NOW)
        assert verified.user is not None
        assert verified.user.first_name == "Влад ✨"

    def test_empty_string_is_missing_credential(self) -> None:
        with pytest.raises(MissingCredential):
            verify_init_data("", TEST_BOT_TOKEN, 3600, now=NOW)

    def test_missing_hash(self) -> None:
        raw = urlencode({"auth_date": str(NOW), "user": json.dumps(USER)})
        with pytest.raises(MissingSignature):
            verify_init_data(raw, TEST_BOT_TOKEN, 3600, now=NOW)

    def test_missing_auth_date_is_expired(self) -> None:
        fields = {"user": json.dumps(USER)}
        fields["hash"] = sign_init_data(fields, TEST_BOT_TOKEN)
        with pytest.raises(Expired):
            verify_init_data(urlencode(fields), TEST_BOT_TOKEN, 3600, now=NOW)

    def test_zero_auth_date_is_expired(self) -> None:
        raw = build_init_data(USER, auth_date=0)
        with pytest.raises(Expired):
            verify_init_data(raw, TEST_BOT_TOKEN, 3600, now=NOW)

    def test_stale_auth_date_is_expired(self) -> None:
        raw = build_init_data(USER, auth_date=NOW - 3601)
        with pytest.raises(Expired):
            verify_init_data(raw, TEST_BOT_TOKEN, 3600, now=NOW)

    def test_auth_date_at_window_edge_is_accepted(self) -> None:
        raw = build_init_data(USER, auth_date=NOW - 3600)
        assert verify_init_data(raw, TEST_BOT_TOKEN, 3600, now=NOW).auth_date == NOW - 3600

    def test_wrong_bot_token(self) -> None:
        raw = build_init_data(USER, auth_date=NOW, bot_token="999:other")
        with pytest.raises(SignatureMismatch):
            verify_init_data(raw, TEST_BOT_TOKEN, 3600, now=NOW)

    def test_tampered_user_is_rejected(self) -> None:
        raw = build_init_data(USER, auth_date=NOW)
        forged = _tamper(raw, "user", json.dumps({**USER, "id": 1}))
        with pytest.raises(SignatureMismatch):
            verify_init_data(forged, TEST_BOT_TOKEN, 3600, now=NOW)

    def test_added_field_is_rejected(self) -> None:
        raw = build_init_data(USER, auth_date=NOW)
        forged = _tamper(raw, "start_param", "promo")
        with pytest.raises(SignatureMismatch):
            verify_init_data(forged, TEST_BOT_TOKEN, 3600, now=NOW)

    @pytest.mark.parametrize("position", [0, 31, 63])
    def test_any_single_character_change_in_hash_is_rejected(self, position: int) -> None:
        raw = build_init_data(USER, auth_date=NOW)
        fields = dict(parse_qsl(raw))
        original = fields["hash"]
        replacement = "0" if original[position] != "0" else "1"
        forged = _tamper(raw, "hash", original[:position] + replacement + original[position + 1:])
        with pytest.raises(SignatureMismatch):
            verify_init_data(forged, TEST_BOT_TOKEN, 3600, now=NOW)

    def test_uppercase_hash_is_rejected(self) -> None:
        raw = build_init_data(USER, auth_date=NOW)
        fields = dict(parse_qsl(raw))
        upper = fields["hash"].upper()
        if upper == fields["hash"]:
            pytest.skip("hash has no letters")
        with pytest.raises(SignatureMismatch):
            verify_init_data(_tamper(raw, "hash", upper), TEST_BOT_TOKEN, 3600, now=NOW)

    def test_non_ascii_hash_is_a_mismatch(self) -> None:
        raw = build_init_data(USER, auth_date=NOW)
        with pytest.raises(SignatureMismatch):
            verify_init_data(_tamper(raw, "hash", "é" * 64), TEST_BOT_TOKEN, 3600, now=NOW)

    def test_malformed_user_json(self) -> None:
        fields = {"auth_date": str(NOW), "user": "{not json"}
        fields["hash"] = sign_init_data(fields, TEST_BOT_TOKEN)
        with pytest.raises(InvalidCredentialFormat):
            verify_init_data(urlencode(fields), TEST_BOT_TOKEN, 3600, now=NOW)

    def test_user_without_id(self) -> None:
        raw = build_init_data({"first_name": "NoId"}, auth_date=NOW)
        with pytest.raises(InvalidCredentialFormat):
            verify_init_data(raw, TEST_BOT_TOKEN, 3600, now=NOW)

    def test_duplicate_fields_are_rejected(self) -> None:
        raw = build_init_data(USER, auth_date=NOW) + f"&auth_date={NOW}"
        with pytest.raises(InvalidCredentialFormat):
            parse_init_data(raw)

    def test_boolean_form(self) -> None:
        good = build_init_data(USER, auth_date=NOW)
        assert is_valid_init_data(good, TEST_BOT_TOKEN, 3600, now=NOW) is True
        assert is_valid_init_data(good, "other:token", 3600, now=NOW) is False
        assert is_valid_init_data("", TEST_BOT_TOKEN, 3600, now=NOW) is False


class TestVerifierSelection:
    """Configuration-driven verifier construction."""

    def test_verifier_uses_injected_clock(self) -> None:
        verifier = InitDataVerifier(TEST_BOT_TOKEN, max_age_seconds=60, clock=lambda: NOW)
        assert verifier.verify(build_init_data(USER, auth_date=NOW - 59)).user is not None
        with pytest.raises(Expired):
            verifier.verify(build_init_data(USER, auth_date=NOW - 61))

    def test_verifier_requires_bot_token(self) -> None:
        with pytest.raises(ValueError):
            InitDataVerifier("")

    def test_missing_token_without_bypass_is_a_configuration_error(self) -> None:
        config = Settings(SECRET_KEY="x", TELEGRAM_BOT_TOKEN=None, TELEGRAM_AUTH_DEV_BYPASS=False)
        with pytest.raises(RuntimeError):
            build_init_data_verifier(config)

    def test_bypass_is_refused_in_production(self) -> None:
        config = Settings(
            SECRET_KEY="x",
            ENVIRONMENT="production",
            TELEGRAM_AUTH_DEV_BYPASS=True,
        )
        with pytest.raises(RuntimeError):
            build_init_data_verifier(config)

    def test_bypass_outside_production_yields_placeholder_identity(self) -> None:
        config = Settings(
            SECRET_KEY="x",
            ENVIRONMENT="development",
            TELEGRAM_AUTH_DEV_BYPASS=True,
        )
        verifier = build_init_data_verifier(config)
        assert isinstance(verifier, DevInitDataVerifier)
        assert verifier.verify("anything").user == DEV_PLACEHOLDER_USER

    def test_configured_token_yields_real_verifier(self) -> None:
        config = Settings(SECRET_KEY="x", TELEGRAM_BOT_TOKEN=TEST_BOT_TOKEN)
        verifier = build_init_data_verifier(config)
        assert isinstance(verifier, InitDataVerifier)
        assert verifier.verify(build_init_data(USER)).user is not None
