"""Authentication service - JWT token handling and user lookup"""

from datetime import datetime, timedelta
from typing import Optional
import uuid

from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from c4g.config import settings
from c4g.db.models import User
from c4g.exceptions import ConflictError


def create_access_token(user_id: str, secret: Optional[str] = None) -> str:
    """Create a JWT access token"""
    expire = datetime.utcnow() + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode = {
        "sub": user_id,
        "exp": expire,
        "iat": datetime.utcnow(),
        "jti": str(uuid.uuid4()),  # Unique token ID
    }
    return jwt.encode(
        to_encode,
        secret or settings.jwt_secret,
        algorithm=settings.jwt_algorithm
    )


def decode_access_token(token: str, secret: Optional[str] = None) -> Optional[str]:
    """Decode a JWT token and return the user ID"""
    try:
        payload = jwt.decode(
            token,
            secret or settings.jwt_secret,
            algorithms=[settings.jwt_algorithm]
        )
    except JWTError:
        return None
    return payload.get("sub")


async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_or_create_user(db: AsyncSession, user_id: str, email: str) -> User:
    """Users come from the signup flow; deploy may be the first time we see one."""
    user = await get_user_by_id(db, user_id)
    if user is None:
        user = User(id=user_id, email=email)
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("Email is registered to another user", email=email)
    return user
