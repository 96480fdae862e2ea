from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    """Declarative base for engine tables; models set ``__tablename__`` explicitly."""

    @declared_attr.directive
    def __tablename__(cls) -> str:  # noqa: N805
        return cls.__name__.lower()


def enum_values(enum_cls) -> list[str]:
    """Persist enum ``value`` strings rather than member names."""

    return [member.value for member in enum_cls]
