"""Feature modules."""


def load_models() -> None:
    """Import every ORM model module so all tables register on Base.metadata."""
    from admissions.modules.applicants import models as _applicants  # noqa: F401
    from admissions.modules.confirmations import models as _confirmations  # noqa: F401
    from admissions.modules.payments import models as _payments  # noqa: F401
    from admissions.modules.sessions import models as _sessions  # noqa: F401
    from admissions.modules.stages import models as _stages  # noqa: F401
    from admissions.modules.users import models as _users  # noqa: F401
