from sqlalchemy import Column, DateTime
from ..database import Base  # This is the same Base created by declarative_base()
from ..utils.clock import utcnow

class BaseModel(Base):
    __abstract__ = True

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
