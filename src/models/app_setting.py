# src/models/app_setting.py
from sqlmodel import SQLModel, Field, Column
from typing import Optional
from datetime import datetime
from sqlalchemy import String, JSON

from src.schemas.connection_schema import utcnow


class AppSetting(SQLModel, table=True):
    """Generic key/value settings row; connection records live under ``oauth_{platform}``."""
    __tablename__ = "app_settings"

    key: str = Field(sa_column=Column(String, primary_key=True))
    value: Optional[dict] = Field(sa_column=Column(JSON), default={})
    updated_at: datetime = Field(default_factory=utcnow)
