from datetime import datetime, timedelta, timezone

import jwt

from clinic_backend.core import config

ROLE_PATIENT = "patient"
ROLE_DOCTOR = "doctor"
ROLES = (ROLE_PATIENT, ROLE_DOCTOR)


def build_subject(role: str, user_id: int) -> str:
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    return f"{role}:{user_id}"


def parse_subject(subject: str) -> tuple[str, int]:
    role, _, raw_id = subject.partition(":")
    if role not in ROLES or not raw_id.isdigit():
        raise ValueError("Malformed token subject")
    return role, int(raw_id)


def create_access_token(role: str, user_id: int, expires_minutes: int | None = None) -> str:
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {"sub": build_subject(role, user_id), "exp": expire, "iat": datetime.now(timezone.utc)}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
