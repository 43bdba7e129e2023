from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from clinic_backend.auth import jwt_handler

security = HTTPBearer()


@dataclass(frozen=True)
class Principal:
    role: str
    user_id: int


def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    try:
        role, user_id = jwt_handler.parse_subject(subject)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid token subject") from exc

    return Principal(role=role, user_id=user_id)


def get_current_patient(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != jwt_handler.ROLE_PATIENT:
        raise HTTPException(status_code=403, detail="Only patients can manage their bookings.")
    return principal


def get_current_doctor(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != jwt_handler.ROLE_DOCTOR:
        raise HTTPException(status_code=403, detail="Only doctors can manage their schedule.")
    return principal
