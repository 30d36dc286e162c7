"""
Upload Model

Original portrait photos submitted for an order.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid

from bustworks.database import Base


class Upload(Base):
    """
    Uploaded photo record.

    Append-only: the newest row for an order is the one used when a
    preview is (re)generated.
    """

    __tablename__ = "uploads"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True)
    storage_path = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Upload {self.id} order={self.order_id}>"
