from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from geoattend.db import Base


class StoredValue(Base):
    __tablename__ = 'store_records'
    __table_args__ = (
        Index('ix_store_records_collection_record', 'collection', 'record_id'),
    )

    path: Mapped[str] = mapped_column(String(255), primary_key=True)
    collection: Mapped[str] = mapped_column(String(80), index=True)
    record_id: Mapped[str] = mapped_column(String(160))
    value_json: Mapped[str] = mapped_column(Text, default='{}')
    revision: Mapped[int] = mapped_column(Integer, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, index=True)
