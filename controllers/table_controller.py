from flask import Blueprint, jsonify, current_app

from services.auth import login_required, current_user
from services.table_service import TableService

table_bp = Blueprint('table', __name__)


@table_bp.route('/public-table/<int:vendor_id>/<identifier>', methods=['GET'])
def public_table_status(vendor_id, identifier):
    """Customer menu page checks its table before ordering."""
    status = TableService.get_table_status(vendor_id, identifier)
    return jsonify(status), 200


@table_bp.route('/vendors/<int:vendor_id>/tables/<int:table_id>/regenerate-qr', methods=['POST'])
@login_required
def regenerate_table_qr(vendor_id, table_id):
    table = TableService.regenerate_qr_code(vendor_id, table_id, current_user())
    current_app.logger.info(f"[regenerate_table_qr] Table {table.id} has a new QR token")
    return jsonify({
        'message': "QR code regenerated successfully",
        'table': table.to_dict(),
    }), 200
