import json

from flask import Blueprint, Response, request, jsonify, current_app

from services.auth import get_bearer_token, load_user_from_token, ensure_vendor_access
from services.errors import InvalidInput, NotFound, Unauthorized
from services.fanout import Connection, get_room_hub, parse_room, vendor_room, table_room

realtime_bp = Blueprint('realtime', __name__)


def format_sse(event, data):
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def _request_user():
    # EventSource cannot send headers, so the stream also takes ?token=
    token = get_bearer_token() or request.args.get('token')
    if not token:
        return None
    return load_user_from_token(token)


def _room_from(data):
    if data.get('room'):
        room = str(data['room'])
    elif data.get('vendorId') and data.get('tableIdentifier'):
        room = table_room(data['vendorId'], data['tableIdentifier'])
    elif data.get('vendorId'):
        room = vendor_room(data['vendorId'])
    else:
        raise InvalidInput("Room is required")

    try:
        parse_room(room)
    except ValueError:
        raise InvalidInput("Unknown room", details={'room': room})
    return room


def _authorize_room(room):
    """Vendor rooms need a token scoped to that vendor; table rooms are public."""
    kind, vendor_id, _ = parse_room(room)
    if kind == 'vendor':
        user = _request_user()
        if user is None:
            raise Unauthorized("Authentication required to join a vendor room")
        ensure_vendor_access(user, vendor_id)


def _get_connection(connection_id):
    connection = get_room_hub().get(connection_id)
    if connection is None:
        raise NotFound("Connection not found")
    return connection


@realtime_bp.route('/realtime/stream', methods=['GET'])
def stream():
    """Open an event stream. The first event carries the connection id used to join rooms."""
    initial_rooms = []
    if request.args.get('vendorId') or request.args.get('room'):
        room = _room_from(request.args)
        _authorize_room(room)
        initial_rooms.append(room)

    hub = get_room_hub()
    connection = Connection(max_queue=current_app.config.get('REALTIME_QUEUE_SIZE', 100))
    heartbeat = current_app.config.get('REALTIME_HEARTBEAT_SECONDS', 15)
    logger = current_app.logger

    def generate():
        # registered on first iteration; a stream closed before that never joins the hub
        hub.register(connection)
        try:
            for room in initial_rooms:
                hub.join(connection, room)
            logger.info(f"🔌 Realtime connection {connection.id} opened (rooms: {initial_rooms})")
            yield format_sse('ready', {'connectionId': connection.id, 'rooms': sorted(connection.rooms)})
            while not connection.closed:
                item = connection.next_event(timeout=heartbeat)
                if item is None:
                    yield ": heartbeat\n\n"
                    continue
                event, payload = item
                yield format_sse(event, payload)
        finally:
            hub.disconnect(connection)
            logger.info(f"🔌 Realtime connection {connection.id} closed")

    return Response(generate(), mimetype='text/event-stream', headers={
        'Cache-Control': 'no-cache',
        'X-Accel-Buffering': 'no',
    })


@realtime_bp.route('/realtime/<connection_id>/join', methods=['POST'])
def join_room(connection_id):
    connection = _get_connection(connection_id)
    room = _room_from(request.get_json(silent=True) or {})
    _authorize_room(room)

    get_room_hub().join(connection, room)
    return jsonify({'connectionId': connection.id, 'room': room, 'rooms': sorted(connection.rooms)}), 200


@realtime_bp.route('/realtime/<connection_id>/leave', methods=['POST'])
def leave_room(connection_id):
    connection = _get_connection(connection_id)
    room = _room_from(request.get_json(silent=True) or {})

    get_room_hub().leave(connection, room)
    return jsonify({'connectionId': connection.id, 'room': room, 'rooms': sorted(connection.rooms)}), 200
