"""Tests for identity resolution: phone normalization, variants, bucket names."""

from __future__ import annotations

import hashlib
from unittest.mock import MagicMock, patch

import pytest

from pacelane.chatwoot.models import Sender
from pacelane.domain.identity import (
    ResolvedIdentity,
    anonymous_identity,
    bucket_name_for,
    normalize_phone,
    phone_candidates,
    phone_variants,
    resolve_identity,
    resolve_in_txn,
)


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("+55 11 99999-8888", "+5511999998888"),
            ("5511999998888", "+5511999998888"),
            ("005511999998888", "+5511999998888"),
            ("(11) 9999-8888", "+551199998888"),
            ("01199998888", "+551199998888"),
            ("5511999998888@s.whatsapp.net", "+5511999998888"),
            ("+1 (415) 555-0100", "+14155550100"),
        ],
    )
    def test_known_formats(self, raw, expected):
        assert normalize_phone(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "abc", "12345", "+"])
    def test_unusable_input_is_none(self, raw):
        assert normalize_phone(raw) is None

    def test_country_code_from_env(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_COUNTRY_CODE", "351")
        assert normalize_phone("2123456789") == "+3512123456789"


class TestPhoneVariants:
    def test_default_country_variants_in_order(self):
        assert phone_variants("+55 11 99999-8888") == [
            "+5511999998888",
            "5511999998888",
            "11999998888",
            "011999998888",
        ]

    def test_foreign_number_has_no_national_forms(self):
        assert phone_variants("+14155550100") == ["+14155550100", "14155550100"]

    def test_unusable_number_has_no_variants(self):
        assert phone_variants("n/a") == []

    def test_candidates_prefer_phone_then_identifier(self):
        sender = Sender(
            sender_id="9",
            phone_number="+5511999998888",
            identifier="5511999998888@s.whatsapp.net",
        )
        assert phone_candidates(sender) == ["+5511999998888", "5511999998888@s.whatsapp.net"]

    def test_candidates_skip_missing(self):
        assert phone_candidates(Sender(sender_id="9")) == []


class TestBucketNames:
    def test_user_bucket_uses_hashed_id(self):
        digest = hashlib.sha256(b"user-1").hexdigest()[:16]
        assert bucket_name_for("42_account_1", "user-1") == f"pacelane-whatsapp-user-{digest}"

    def test_contact_bucket_sanitized(self):
        assert bucket_name_for("42_account_1", None) == "pacelane-whatsapp-contact-42-account-1"

    def test_prefix_from_env(self, monkeypatch):
        monkeypatch.setenv("BUCKET_PREFIX", "Acme_Media")
        assert bucket_name_for("1_account_2", None) == "acme-media-contact-1-account-2"

    def test_length_capped_at_63(self):
        name = bucket_name_for("9" * 80 + "_account_1", None)
        assert len(name) <= 63
        assert not name.endswith("-")

    def test_names_are_bucket_safe(self):
        name = bucket_name_for("ÁB c!_account_1", None)
        assert all(c.islower() or c.isdigit() or c == "-" for c in name)

    def test_user_bucket_same_for_all_contacts_of_user(self):
        assert bucket_name_for("1_account_1", "u") == bucket_name_for("2_account_9", "u")


class TestResolvedIdentity:
    def test_owner_id_for_user(self):
        identity = ResolvedIdentity(contact_key="42_account_1", user_id="user-1", bucket_name="b")
        assert identity.owner_id == "user-1"
        assert identity.is_anonymous is False

    def test_owner_id_for_anonymous_contact(self):
        identity = anonymous_identity("42_account_1")
        assert identity.owner_id == "contact_42_account_1"
        assert identity.is_anonymous is True
        assert identity.bucket_name == "pacelane-whatsapp-contact-42-account-1"


class TestResolveInTxn:
    def test_cached_user_short_circuits(self):
        cur = MagicMock()
        with patch("pacelane.domain.identity.repo") as repo:
            repo.get_identity.return_value = ("user-1", "bucket-1")
            identity = resolve_in_txn(cur, "42_account_1", ["+5511999998888"])

        assert identity == ResolvedIdentity("42_account_1", "user-1", "bucket-1")
        repo.find_user_by_mapping.assert_not_called()

    def test_mapping_hit(self):
        cur = MagicMock()
        with patch("pacelane.domain.identity.repo") as repo:
            repo.get_identity.return_value = None
            repo.find_user_by_mapping.return_value = "user-7"
            repo.upsert_identity.side_effect = lambda cur, key, uid, bucket: (uid, bucket)
            identity = resolve_in_txn(cur, "42_account_1", ["+5511999998888"])

        assert identity.user_id == "user-7"
        assert identity.bucket_name == bucket_name_for("42_account_1", "user-7")
        repo.find_profile_user.assert_not_called()
        repo.insert_mapping.assert_not_called()

    def test_profile_hit_records_mapping(self):
        cur = MagicMock()
        with patch("pacelane.domain.identity.repo") as repo:
            repo.get_identity.return_value = None
            repo.find_user_by_mapping.return_value = None
            repo.find_profile_user.return_value = "user-8"
            repo.upsert_identity.side_effect = lambda cur, key, uid, bucket: (uid, bucket)
            identity = resolve_in_txn(cur, "42_account_1", ["(11) 99999-8888"])

        assert identity.user_id == "user-8"
        repo.insert_mapping.assert_called_once_with(cur, "+5511999998888", "user-8")

    def test_no_match_is_anonymous(self):
        cur = MagicMock()
        with patch("pacelane.domain.identity.repo") as repo:
            repo.get_identity.return_value = None
            repo.find_user_by_mapping.return_value = None
            repo.find_profile_user.return_value = None
            repo.upsert_identity.side_effect = lambda cur, key, uid, bucket: (uid, bucket)
            identity = resolve_in_txn(cur, "42_account_1", [])

        assert identity.is_anonymous
        assert identity.bucket_name == "pacelane-whatsapp-contact-42-account-1"

    def test_stored_user_kept_when_lookup_finds_nothing(self):
        """A previously known user is never downgraded to anonymous."""
        cur = MagicMock()
        with patch("pacelane.domain.identity.repo") as repo:
            repo.get_identity.return_value = (None, "old-bucket")
            repo.find_user_by_mapping.return_value = None
            repo.find_profile_user.return_value = None
            repo.upsert_identity.return_value = ("user-1", "bucket-user-1")
            identity = resolve_in_txn(cur, "42_account_1", [])

        assert identity.user_id == "user-1"
        assert identity.bucket_name == "bucket-user-1"


class TestResolveIdentity:
    def test_database_failure_degrades_to_anonymous(self):
        with patch("pacelane.domain.identity.txn", side_effect=RuntimeError("db down")):
            identity = resolve_identity("42_account_1", ["+5511999998888"])

        assert identity == anonymous_identity("42_account_1")
