"""Category model."""
from sqlalchemy import Column, String, Text, Integer, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntegerPK


class Category(Base):
    """Produce category (leafy greens, root vegetables, fruit...)."""

    __tablename__ = 'category'

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    purchases = relationship('Purchase', back_populates='category')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'display_order': self.display_order,
        }

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"
