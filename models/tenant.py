from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Index
from models.base import Base


class Timezone(Base):
    """IANA timezone names referenced by users"""
    __tablename__ = "timezones"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timezone = Column(String(64), nullable=False)


class User(Base):
    """Root-store user account; the tenant key is the user id"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    timezone_id = Column(Integer, ForeignKey("timezones.id"), nullable=True)


class UserDatabase(Base):
    """A physical tenant database"""
    __tablename__ = "user_databases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    db_name = Column(String(128), nullable=False, unique=True)
    app_type = Column(Integer, default=1, nullable=False)


class UserDatabaseMapping(Base):
    """
    Maps a user (tenant key) to its database.

    Lives in the root store only; the tenant router reads it to decide
    which physical database a unit of work targets.
    """
    __tablename__ = "user_database_mapping"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    database_id = Column(Integer, ForeignKey("user_databases.id"), nullable=False)

    __table_args__ = (
        Index("idx_user_db_mapping_user", "user_id"),
    )
