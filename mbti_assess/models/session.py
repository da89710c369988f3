from sqlalchemy import Column, String, DateTime, JSON
from mbti_assess.database import Base
from datetime import datetime


class SessionEntry(Base):
    """
    Key-value record with an optional expiry. One table serves several stores,
    separated by namespace (session lifecycle records, progress backups).
    """
    __tablename__ = "session_entries"

    namespace = Column(String, primary_key=True)
    key = Column(String, primary_key=True)

    value = Column(JSON, nullable=False)
    saved_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True, index=True)
