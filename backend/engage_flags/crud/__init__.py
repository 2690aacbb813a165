from .feature_flags import count_flags, get_flag, list_flags, upsert_flag
from .flag_evaluations import daily_stats, evaluation_stats, list_evaluations, record_evaluations
from .organization_flags import (
    delete_organization_flag,
    get_organization_flag,
    list_organization_flags,
    set_organization_flag,
)
from .user_overrides import (
    get_active_user_override,
    get_user_override,
    list_user_overrides,
    remove_user_override,
    set_user_override,
)
from .users import create_user, get_user_by_id, get_user_by_username
