# models/order.py
from dataclasses import dataclass
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from db.extensions import db
from services.order_state import OrderStatus, PaymentStatus, PaymentMethod


@dataclass(frozen=True)
class StructuredTable:
    table_id: int
    name: str
    qr_code: str


@dataclass(frozen=True)
class FreeTextIdentifier:
    identifier: str


class Order(db.Model):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    vendor_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    table_id = Column(Integer, ForeignKey('tables.id', ondelete='SET NULL'), nullable=True, index=True)
    # Text the customer ordered against; kept when the table row is gone
    table_identifier = Column(String(100), nullable=True)

    status = Column(
        db.Enum(*OrderStatus.ALL, name='order_status_enum'),
        default=OrderStatus.PENDING, nullable=False, index=True
    )
    total_amount = Column(Numeric(10, 2), default=0, nullable=False)
    invoice_no = Column(String(100), unique=True, nullable=False)

    transaction_id = Column(String(100), nullable=True)
    payment_status = Column(
        db.Enum(*PaymentStatus.ALL, name='payment_status_enum'),
        default=PaymentStatus.PENDING, nullable=False
    )
    payment_method = Column(
        db.Enum(*PaymentMethod.ALL, name='payment_method_enum'),
        default=PaymentMethod.CASH, nullable=False
    )

    # Customer verification
    customer_verified = Column(Boolean, default=False, nullable=False)
    verification_timestamp = Column(DateTime, nullable=True)

    # Delivery issue reported by the customer
    delivery_issue_reported = Column(Boolean, default=False, nullable=False)
    issue_report_timestamp = Column(DateTime, nullable=True)
    issue_description = Column(Text, nullable=True)

    # Resolution by the vendor
    issue_resolved = Column(Boolean, default=False, nullable=False)
    issue_resolution_timestamp = Column(DateTime, nullable=True)
    resolution_message = Column(Text, nullable=True)

    version_id = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship('OrderItem', back_populates='order', cascade='all, delete-orphan', order_by='OrderItem.id')
    table = relationship('Table', back_populates='orders')
    vendor = relationship('User')

    __mapper_args__ = {
        'version_id_col': version_id,
    }

    @property
    def table_ref(self):
        """StructuredTable when a table row is linked, FreeTextIdentifier otherwise, or None."""
        if self.table is not None:
            return StructuredTable(self.table.id, self.table.name, self.table.qr_code)
        if self.table_identifier:
            return FreeTextIdentifier(self.table_identifier)
        return None

    @property
    def table_name(self):
        ref = self.table_ref
        if isinstance(ref, StructuredTable):
            return ref.name
        if isinstance(ref, FreeTextIdentifier):
            return ref.identifier
        return None

    def __repr__(self):
        return f"<Order id={self.id} invoice={self.invoice_no} status={self.status}>"
