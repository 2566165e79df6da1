from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    # Default table name: lowercase class name + "s" (User -> users)
    @declared_attr.directive
    def __tablename__(cls) -> str:
        return cls.__name__.lower() + "s"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
