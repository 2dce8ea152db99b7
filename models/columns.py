from typing import Type
from enum import Enum

from sqlalchemy import JSON, Column, DateTime
from sqlalchemy import Enum as SAEnum

# Column factories shared by the shift-ledger tables. Each call returns a new
# Column because SQLAlchemy columns cannot be attached to two tables.


def enum_column(enum_cls: Type[Enum], nullable: bool = False, index: bool = False) -> Column:
    # Store the enum *value* ("open"), not its name, so raw SQL such as the
    # partial unique index predicate can match on it.
    return Column(
        SAEnum(
            enum_cls,
            values_callable=lambda members: [m.value for m in members],
            native_enum=False,
            length=32,
        ),
        nullable=nullable,
        index=index,
    )


def utc_datetime_column(nullable: bool = True, index: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable, index=index)


def json_column(nullable: bool = True) -> Column:
    return Column(JSON, nullable=nullable)
