# models/orderItem.py
from sqlalchemy import Column, Integer, ForeignKey, DateTime, Numeric, CheckConstraint
from sqlalchemy.orm import relationship
from db.extensions import db
from datetime import datetime


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint('quantity >= 1', name='ck_order_items_quantity_positive'),
    )

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    menu_item_id = Column(Integer, ForeignKey('menu_items.id', ondelete='SET NULL'), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(8, 2), nullable=False)  # unit price at time of order
    created_at = Column(DateTime, default=datetime.utcnow)

    order = relationship("Order", back_populates="items")
    menu_item = relationship("MenuItem")

    @property
    def subtotal(self):
        return self.price * self.quantity

    @property
    def name(self):
        return self.menu_item.name if self.menu_item else "Deleted Item"
