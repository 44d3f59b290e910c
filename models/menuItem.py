# models/menuItem.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Text, Numeric
from db.extensions import db
from datetime import datetime


class MenuItem(db.Model):
    __tablename__ = 'menu_items'

    id = Column(Integer, primary_key=True)
    vendor_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, default='')
    price = Column(Numeric(8, 2), nullable=False)
    category = Column(String(50), nullable=False, default='General')
    is_available = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<MenuItem id={self.id} name='{self.name}' price={self.price}>"
