"""Schema 版本记录."""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from feedkeeper.utils.timeutil import utcnow


class SchemaVersion(SQLModel, table=True):
    """数据库 schema 版本（单行存储）."""

    __tablename__ = "schema_version"  # type: ignore[assignment]

    id: int = Field(default=1, primary_key=True)
    version: int = Field(description="当前 schema 版本")
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
