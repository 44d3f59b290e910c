# models/table.py
import uuid
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from db.extensions import db
from datetime import datetime


def generate_qr_code():
    return uuid.uuid4().hex


class Table(db.Model):
    __tablename__ = 'tables'
    __table_args__ = (
        UniqueConstraint('vendor_id', 'name', name='uq_tables_vendor_name'),
    )

    id = Column(Integer, primary_key=True)
    vendor_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    qr_code = Column(String(64), unique=True, nullable=False, default=generate_qr_code)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    orders = relationship('Order', back_populates='table', passive_deletes=True)

    def regenerate_qr_code(self):
        """Issue a fresh token; previously printed QR codes stop resolving."""
        self.qr_code = generate_qr_code()
        return self.qr_code

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'qrCode': self.qr_code,
            'isActive': self.is_active,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Table id={self.id} vendor_id={self.vendor_id} name='{self.name}'>"
