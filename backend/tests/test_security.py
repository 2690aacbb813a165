import os
from datetime import timedelta

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "secret")

from engage_flags.core.security import JWTError, create_access_token, decode_access_token


def test_token_round_trip_keeps_claims():
    token = create_access_token({"sub": "alice", "user_id": 3})
    claims = decode_access_token(token)
    assert claims["sub"] == "alice"
    assert claims["user_id"] == 3
    assert "exp" in claims


def test_expired_token_is_rejected():
    token = create_access_token({"sub": "alice"}, expires_delta=timedelta(seconds=-30))
    with pytest.raises(JWTError):
        decode_access_token(token)


def test_tampered_token_is_rejected():
    token = create_access_token({"sub": "alice"})
    with pytest.raises(JWTError):
        decode_access_token(token[:-2] + ("aa" if not token.endswith("aa") else "bb"))
