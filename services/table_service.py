# services/table_service.py

import logging

from sqlalchemy import or_

from db.extensions import db
from models.order import Order
from models.table import Table
from services.auth import ensure_vendor_access
from services.errors import NotFound
from services.order_state import OPEN_STATUSES

logger = logging.getLogger(__name__)


class TableService:

    @staticmethod
    def find_by_identifier(vendor_id, identifier):
        """Resolve a scanned identifier: QR token first, then display name."""
        if not identifier:
            return None
        candidates = Table.query.filter(
            Table.vendor_id == vendor_id,
            or_(Table.qr_code == identifier, Table.name == identifier)
        ).all()
        for table in candidates:
            if table.qr_code == identifier:
                return table
        return candidates[0] if candidates else None

    @staticmethod
    def get_vendor_table(vendor_id, table_id):
        table = Table.query.filter_by(id=table_id, vendor_id=vendor_id).first()
        if not table:
            raise NotFound("Table not found")
        return table

    @staticmethod
    def active_order(table_id):
        """Most recent order holding the table, or None. Derived from orders on every call."""
        return Order.query.filter(
            Order.table_id == table_id,
            Order.status.in_(OPEN_STATUSES)
        ).order_by(Order.created_at.desc(), Order.id.desc()).first()

    @staticmethod
    def has_active_order(table_id):
        return TableService.active_order(table_id) is not None

    @staticmethod
    def get_table_status(vendor_id, qr_code):
        table = Table.query.filter_by(vendor_id=vendor_id, qr_code=qr_code).first()
        if not table:
            raise NotFound("Table not found")

        active = TableService.active_order(table.id)
        return {
            'table_id': table.id,
            'name': table.name,
            'qr_code': table.qr_code,
            'is_active': table.is_active,
            'vendor_id': table.vendor_id,
            'has_active_order': active is not None,
            'active_order_id': active.id if active else None,
        }

    @staticmethod
    def regenerate_qr_code(vendor_id, table_id, acting_user):
        ensure_vendor_access(acting_user, vendor_id)
        table = TableService.get_vendor_table(vendor_id, table_id)
        old_code = table.qr_code
        table.regenerate_qr_code()
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info(f"🔄 QR code regenerated for table {table.id} (vendor {vendor_id}), old token {old_code[:6]}…")
        return table
