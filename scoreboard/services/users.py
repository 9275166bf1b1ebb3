from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.core.errors import NotFoundError, ValidationError
from scoreboard.models.user import User, UserRole, UserStatus


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """Get a user by their email address."""
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    """Get a user by their ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def require_user(db: AsyncSession, user_id: int) -> User:
    user = await get_user_by_id(db, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found", user_id=user_id)
    return user


async def create_user(
    db: AsyncSession,
    email: str,
    first_name: str,
    last_name: str,
    role: str = UserRole.EMPLOYEE.value,
    department: str | None = None,
    territory: str | None = None,
    manager: str | None = None,
) -> User:
    """Create a user record. Registration flows outside this service call this."""
    try:
        UserRole(role)
    except ValueError:
        raise ValidationError(f"Invalid role. Must be one of: {[r.value for r in UserRole]}", field="role")
    if await get_user_by_email(db, email) is not None:
        raise ValidationError(f"User {email} already exists", field="email")

    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        role=role,
        status=UserStatus.ACTIVE.value,
        department=department,
        territory=territory,
        manager=manager,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def set_user_status(db: AsyncSession, user_id: int, status: str) -> User:
    try:
        UserStatus(status)
    except ValueError:
        raise ValidationError(f"Invalid status. Must be one of: {[s.value for s in UserStatus]}", field="status")
    user = await require_user(db, user_id)
    user.status = status
    await db.commit()
    return user
