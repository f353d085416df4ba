from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class ListRow(Base):
    __tablename__ = "lists"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    apps = relationship(
        "SavedAppRow",
        back_populates="app_list",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:  # pragma: no cover - repr utility
        return f"ListRow(id={self.id}, name={self.name})"


Index("idx_list_name", ListRow.name)


class SavedAppRow(Base):
    """Snapshot of an application's metadata at the time it was saved to a list."""

    __tablename__ = "saved_apps"
    __table_args__ = (UniqueConstraint("list_id", "package_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    list_id = Column(
        Integer,
        ForeignKey("lists.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String, nullable=False)
    package_id = Column(String, nullable=False, index=True)
    version = Column(String, nullable=True)
    source = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    app_list = relationship("ListRow", back_populates="apps")

    def __repr__(self) -> str:  # pragma: no cover - repr utility
        return f"SavedAppRow(list_id={self.list_id}, package_id={self.package_id})"
