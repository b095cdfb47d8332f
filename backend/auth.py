from datetime import datetime, timedelta
from typing import Optional, Dict, Any
import jwt
from fastapi import Header
import logging

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
AUTH_HEADER = "x-encrypted-auth"

# Tokens from internal staff (Entra) may view any agreement;
# tokens from applicants (Defra ID) only their own sbi
SOURCE_ENTRA = "entra"
SOURCE_DEFRA = "defra"

TOKEN_EXPIRE_MINUTES = 30


def create_auth_token(
    sbi: Optional[str],
    secret: str,
    source: str = SOURCE_DEFRA,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create an x-encrypted-auth token (used by tests and local tooling)"""
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=TOKEN_EXPIRE_MINUTES))
    to_encode = {"sbi": sbi, "source": source, "exp": expire}
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def extract_jwt_payload(token: Optional[str], secret: str) -> Optional[Dict[str, Any]]:
    """Decode and verify the token; None when missing or invalid"""
    if not token or not token.strip():
        logger.error("[AUTH] No JWT token provided")
        return None

    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.error("[AUTH] JWT token has expired")
        return None
    except jwt.PyJWTError as e:
        logger.error(f"[AUTH] Invalid JWT token provided: {e}")
        return None

    logger.info(f"[AUTH] JWT payload extracted: hasSbi={bool(payload.get('sbi'))} source={payload.get('source')}")
    return payload


def verify_jwt_payload(payload: Optional[Dict[str, Any]], agreement: Optional[Dict[str, Any]]) -> bool:
    """True if the token holder may act on the agreement"""
    if payload is None:
        return False
    if payload.get("source") == SOURCE_ENTRA:
        return True
    if not agreement:
        return False
    return payload.get("source") == SOURCE_DEFRA and str(payload.get("sbi")) == str(agreement.get("sbi"))


def validate_jwt_authentication(
    token: Optional[str],
    agreement: Optional[Dict[str, Any]],
    secret: str,
    enabled: bool = True
) -> bool:
    """JWT check honouring the JWT_ENABLED switch"""
    if not enabled:
        logger.info("[AUTH] JWT authentication is disabled")
        return True

    payload = extract_jwt_payload(token, secret)
    if not payload:
        return False
    return verify_jwt_payload(payload, agreement)


async def get_auth_token(x_encrypted_auth: Optional[str] = Header(default=None)) -> Optional[str]:
    """FastAPI dependency returning the raw x-encrypted-auth header"""
    return x_encrypted_auth
