"""Declarative base shared by every ORM model."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    # Models use classic Column() attributes with plain annotations
    __allow_unmapped__ = True
