# models/user.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Text
from sqlalchemy.orm import relationship
from werkzeug.security import generate_password_hash, check_password_hash
from db.extensions import db
from datetime import datetime


class User(db.Model):
    """Vendor, staff or admin account. Staff rows point back at their vendor."""
    __tablename__ = 'users'

    ROLE_VENDOR = 'vendor'
    ROLE_STAFF = 'staff'
    ROLE_ADMIN = 'admin'
    ROLES = (ROLE_VENDOR, ROLE_STAFF, ROLE_ADMIN)

    id = Column(Integer, primary_key=True)
    username = Column(String(150), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    restaurant_name = Column(String(100), nullable=True)
    owner_name = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    role = Column(db.Enum(*ROLES, name='user_role_enum'), nullable=False, default=ROLE_VENDOR)
    vendor_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    vendor = relationship('User', remote_side=[id], backref='staff_members')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def effective_vendor_id(self):
        if self.role == self.ROLE_STAFF:
            return self.vendor_id
        return self.id

    def __repr__(self):
        return f"<User id={self.id} username='{self.username}' role={self.role}>"
