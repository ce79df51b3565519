from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi import HTTPException
from jose import jwt

from gigmarket.core.config import settings
from gigmarket.core.security import (
    Identity,
    create_access_token,
    decode_access_token,
    identity_of,
    profile_from_token,
    subject_from_token,
)
from gigmarket.services.profile import upsert_profile


class TestTokens:
    def test_round_trip(self):
        token = create_access_token({"sub": "auth-123"})
        assert decode_access_token(token)["sub"] == "auth-123"
        assert subject_from_token(token) == "auth-123"

    def test_expired_token(self):
        token = create_access_token({"sub": "auth-123"}, expires_delta=timedelta(seconds=-5))
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(token)
        assert exc_info.value.status_code == 401

    def test_foreign_signature(self):
        token = jwt.encode({"sub": "auth-123"}, "not-our-secret", algorithm="HS256")
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(token)
        assert exc_info.value.status_code == 401

    def test_missing_subject(self):
        token = create_access_token({"role": "authenticated"})
        with pytest.raises(HTTPException) as exc_info:
            subject_from_token(token)
        assert exc_info.value.status_code == 401

    def test_audience_is_enforced_when_configured(self):
        with patch.object(settings, "jwt_audience", "authenticated"):
            good = create_access_token({"sub": "auth-1"})
            assert decode_access_token(good)["aud"] == "authenticated"

            bad = create_access_token({"sub": "auth-1", "aud": "someone-else"})
            with pytest.raises(HTTPException):
                decode_access_token(bad)


class TestIdentity:
    def test_roles(self):
        assert Identity(profile_id=1, user_type="client").is_client
        assert Identity(profile_id=1, user_type="provider").is_provider
        assert not Identity(profile_id=1, user_type="provider").is_client

    @pytest.mark.asyncio
    async def test_profile_from_token(self, db):
        profile = await upsert_profile(db, "auth-xyz", full_name="Rafi", user_type="provider")
        token = create_access_token({"sub": "auth-xyz"})

        found = await profile_from_token(db, token)

        assert found.id == profile.id
        assert identity_of(found) == Identity(profile_id=profile.id, user_type="provider")

    @pytest.mark.asyncio
    async def test_unknown_profile(self, db):
        token = create_access_token({"sub": "auth-nobody"})
        with pytest.raises(HTTPException) as exc_info:
            await profile_from_token(db, token)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Profile not found"


class TestUpsertProfile:
    @pytest.mark.asyncio
    async def test_creates_then_updates_given_fields_only(self, db):
        created = await upsert_profile(db, "auth-42", full_name="Nadia", phone="+8801700000000")
        assert created.user_type == "client"

        updated = await upsert_profile(db, "auth-42", user_type="provider", location="Sylhet")

        assert updated.id == created.id
        assert updated.user_type == "provider"
        assert updated.full_name == "Nadia"
        assert updated.phone == "+8801700000000"
        assert updated.location == "Sylhet"
