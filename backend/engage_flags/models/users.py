from sqlalchemy import Boolean, Column, Enum, Integer, String

from engage_flags.core.db import Base
from engage_flags.models.enums import UserRoleEnum, enum_values
from engage_flags.models.mixins import TimestampMixin


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    role = Column(
        Enum(
            UserRoleEnum,
            name="user_role_enum",
            native_enum=False,
            validate_strings=True,
            values_callable=enum_values,
        ),
        nullable=False,
        default=UserRoleEnum.MEMBER,
    )
    is_admin = Column(Boolean, nullable=False, default=False)
    # Employees belong to one organization; platform operators may have none.
    organization_id = Column(Integer, nullable=True, index=True)
