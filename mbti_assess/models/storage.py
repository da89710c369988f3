from sqlalchemy import Column, String, Text, DateTime
from mbti_assess.database import Base
from datetime import datetime


class StorageItem(Base):
    """Durable storage tier: one serialized payload per key."""
    __tablename__ = "storage_items"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
