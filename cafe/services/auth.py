from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from jose import jwt

from cafe.core.config import JWT_ALGORITHM, JWT_EXPIRE_MINUTES, JWT_SECRET_KEY


# =========================
# PASSWORD (bcrypt direto, sem passlib)
# =========================
def _normalize_password_for_bcrypt(password: str) -> bytes:
    """bcrypt só considera até 72 bytes; o resto é descartado."""
    pw = (password or "").encode("utf-8")
    return pw[:72]


def hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(_normalize_password_for_bcrypt(password), bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(
            _normalize_password_for_bcrypt(plain_password),
            (password_hash or "").encode("utf-8"),
        )
    except ValueError:
        # hash malformado no banco
        return False


def password_looks_hashed(password: str) -> bool:
    return password.startswith(("$2a$", "$2b$", "$2y$"))


# =========================
# JWT HELPERS
# =========================
def create_access_token(
    user_id: str,
    extra: Optional[Dict[str, Any]] = None,
    expires_minutes: int = JWT_EXPIRE_MINUTES,
) -> str:
    """"sub" precisa ser string; o e-mail e o papel vão como claims extras."""
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=expires_minutes)

    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    if extra:
        payload.update(extra)

    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Retorna o payload do JWT ou levanta ValueError se inválido."""
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except Exception as e:
        raise ValueError("Token inválido ou expirado") from e
