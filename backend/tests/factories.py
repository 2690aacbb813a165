from uuid import uuid4

from engage_flags.core.security import create_access_token
from engage_flags.crud.feature_flags import upsert_flag
from engage_flags.crud.users import create_user
from engage_flags.models.enums import UserRoleEnum


def make_user(
    db,
    *,
    username: str | None = None,
    role: UserRoleEnum | str = UserRoleEnum.MEMBER,
    is_admin: bool = False,
    organization_id: int | None = None,
):
    username = username or f"user_{uuid4().hex[:8]}"
    return create_user(db, username, role=role, is_admin=is_admin, organization_id=organization_id)


def make_admin(db, *, username: str | None = None, organization_id: int | None = None):
    return make_user(
        db,
        username=username or f"admin_{uuid4().hex[:8]}",
        role=UserRoleEnum.CORPORATE_ADMIN,
        organization_id=organization_id,
    )


def make_flag(
    db,
    *,
    flag_key: str | None = None,
    flag_type: str = "boolean",
    default_value: str = "false",
    is_active: bool = True,
    name: str | None = None,
):
    flag_key = flag_key or f"flag_{uuid4().hex[:8]}"
    return upsert_flag(
        db,
        flag_key,
        name=name or flag_key.replace("_", " ").title(),
        flag_type=flag_type,
        default_value=default_value,
        is_active=is_active,
    )


def auth_headers(user, **extra_headers) -> dict[str, str]:
    token = create_access_token({"sub": user.username, "user_id": user.id})
    headers = {"Authorization": f"Bearer {token}"}
    headers.update(extra_headers)
    return headers
