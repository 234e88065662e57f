"""Declarative base for ephemeral-drop models."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
