from sqlalchemy.orm import Session

from engage_flags.models.enums import UserRoleEnum
from engage_flags.models.users import User


def get_user_by_username(db: Session, username: str) -> User | None:
    return db.query(User).filter(User.username == username).first()


def get_user_by_id(db: Session, user_id: int) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def create_user(
    db: Session,
    username: str,
    *,
    role: UserRoleEnum | str = UserRoleEnum.MEMBER,
    is_admin: bool = False,
    organization_id: int | None = None,
) -> User:
    user = User(
        username=username,
        role=UserRoleEnum(role),
        is_admin=is_admin,
        organization_id=organization_id,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
