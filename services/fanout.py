# services/fanout.py
"""
Realtime fan-out channel.

Events are addressed to rooms: ``vendor:{vendorId}`` for staff sessions and
``table:{vendorId}:{tableIdentifier}`` for customer devices at a table.
Delivery is at-most-once to whoever is connected at publish time; nothing is
buffered for clients that join later, they re-fetch over REST instead.

The coordinator only sees a ``FanoutPublisher``. With the Redis backend the
publisher writes to Redis pub/sub and every app instance runs a
``RedisRoomRelay`` that feeds its local ``RoomHub``; the in-memory backend
skips Redis and only works for a single process.
"""

import json
import logging
import queue
import threading
import time
import uuid
from collections import defaultdict

from flask import current_app

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = 'fanout:'
DEDUPE_TTL_SECONDS = 30

# Events whose handlers change order state on the client, and the payload key holding the new status
STATUS_EVENTS = {
    'order-status-changed': 'newStatus',
    'order-status-update': 'status',
}


def vendor_room(vendor_id):
    return f"vendor:{vendor_id}"


def table_room(vendor_id, table_identifier):
    return f"table:{vendor_id}:{table_identifier}"


def parse_room(room):
    """Split a room name into (kind, vendor_id, table_identifier). Raises ValueError."""
    if not isinstance(room, str):
        raise ValueError("Room must be a string")
    kind, _, rest = room.partition(':')
    if kind == 'vendor' and rest.isdigit():
        return 'vendor', int(rest), None
    if kind == 'table':
        vendor_part, _, identifier = rest.partition(':')
        if vendor_part.isdigit() and identifier:
            return 'table', int(vendor_part), identifier
    raise ValueError(f"Unknown room: {room}")


def _dumps(data):
    return json.dumps(data, default=str)


class FanoutPublisher:
    """What the order coordinator publishes through."""

    def publish(self, room, event, payload):
        raise NotImplementedError


class Connection:
    """
    One connected client. Holds a bounded queue drained by the transport.

    Status events are de-duplicated on (event, orderId, status) for a short
    window so a duplicate delivery is not applied twice.
    """

    def __init__(self, connection_id=None, max_queue=100, dedupe_ttl=DEDUPE_TTL_SECONDS, clock=time.monotonic):
        self.id = connection_id or uuid.uuid4().hex
        self.rooms = set()
        self.closed = False
        self._queue = queue.Queue(maxsize=max_queue)
        self._dedupe_ttl = dedupe_ttl
        self._clock = clock
        self._seen = {}
        self._lock = threading.Lock()

    def _dedupe_key(self, event, payload):
        status_key = STATUS_EVENTS.get(event)
        if status_key is None or not isinstance(payload, dict):
            return None
        return event, payload.get('orderId'), payload.get(status_key)

    def _is_duplicate(self, key):
        now = self._clock()
        with self._lock:
            self._seen = {k: expiry for k, expiry in self._seen.items() if expiry > now}
            if key in self._seen:
                return True
            self._seen[key] = now + self._dedupe_ttl
            return False

    def deliver(self, event, payload):
        """Queue an event. Returns False when it was dropped."""
        if self.closed:
            return False
        key = self._dedupe_key(event, payload)
        if key is not None and self._is_duplicate(key):
            logger.debug(f"🔁 Dropped duplicate {event} for connection {self.id}: {key}")
            return False
        try:
            self._queue.put_nowait((event, payload))
            return True
        except queue.Full:
            logger.warning(f"⚠️  Queue full for connection {self.id}, dropped {event}")
            return False

    def next_event(self, timeout=None):
        """Block for the next (event, payload) pair; None on timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self):
        self.closed = True


class RoomHub:
    """Room membership for the connections attached to this process."""

    def __init__(self):
        self._rooms = defaultdict(set)
        self._connections = {}
        self._lock = threading.RLock()

    def register(self, connection):
        with self._lock:
            self._connections[connection.id] = connection
        return connection

    def get(self, connection_id):
        with self._lock:
            return self._connections.get(connection_id)

    def join(self, connection, room):
        with self._lock:
            self._rooms[room].add(connection.id)
            connection.rooms.add(room)
        logger.debug(f"Connection {connection.id} joined {room}")

    def leave(self, connection, room):
        with self._lock:
            members = self._rooms.get(room)
            if members is not None:
                members.discard(connection.id)
                if not members:
                    del self._rooms[room]
            connection.rooms.discard(room)
        logger.debug(f"Connection {connection.id} left {room}")

    def disconnect(self, connection):
        with self._lock:
            for room in list(connection.rooms):
                self.leave(connection, room)
            self._connections.pop(connection.id, None)
        connection.close()
        logger.debug(f"Connection {connection.id} disconnected")

    def members(self, room):
        with self._lock:
            return [self._connections[cid] for cid in self._rooms.get(room, ()) if cid in self._connections]

    def deliver(self, room, event, payload):
        """Push to current members of `room`. Returns the number of connections reached."""
        delivered = 0
        for connection in self.members(room):
            if connection.deliver(event, payload):
                delivered += 1
        return delivered


class InMemoryFanoutPublisher(FanoutPublisher):
    """Publishes straight into a local hub. Single instance only."""

    def __init__(self, hub):
        self.hub = hub

    def publish(self, room, event, payload):
        self.hub.deliver(room, event, payload)


class RedisFanoutPublisher(FanoutPublisher):
    """Publishes an envelope on Redis pub/sub so every app instance sees it."""

    def __init__(self, redis_client, prefix=CHANNEL_PREFIX):
        self.redis_client = redis_client
        self.prefix = prefix

    def publish(self, room, event, payload):
        envelope = {'room': room, 'event': event, 'payload': payload}
        receivers = self.redis_client.publish(f"{self.prefix}{room}", _dumps(envelope))
        logger.debug(f"📣 Published {event} to {room} ({receivers} subscribers)")


class RedisRoomRelay:
    """Subscribes to every fan-out channel and hands envelopes to the local hub."""

    def __init__(self, redis_client, hub, prefix=CHANNEL_PREFIX, sleep_time=0.01):
        self.redis_client = redis_client
        self.hub = hub
        self.prefix = prefix
        self.sleep_time = sleep_time
        self._pubsub = None
        self._thread = None

    def handle_message(self, message):
        try:
            envelope = json.loads(message['data'])
            self.hub.deliver(envelope['room'], envelope['event'], envelope['payload'])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"⚠️  Ignoring malformed fan-out message: {str(e)}")

    def start(self):
        if self._thread is not None:
            return self._thread
        self._pubsub = self.redis_client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.psubscribe(**{f"{self.prefix}*": self.handle_message})
        self._thread = self._pubsub.run_in_thread(sleep_time=self.sleep_time, daemon=True)
        logger.info("✅ Fan-out relay subscribed to Redis")
        return self._thread

    def stop(self):
        if self._thread is not None:
            self._thread.stop()
            self._thread = None
        if self._pubsub is not None:
            self._pubsub.close()
            self._pubsub = None


def init_fanout(app, redis_client=None):
    """Build the hub and publisher for `app` according to REALTIME_BACKEND."""
    hub = RoomHub()
    backend = app.config.get('REALTIME_BACKEND', 'redis')

    if backend == 'memory':
        publisher = InMemoryFanoutPublisher(hub)
        app.logger.info("🔧 Realtime fan-out using in-process hub")
    elif backend == 'redis':
        if redis_client is None:
            from db.extensions import get_redis_client
            redis_client = get_redis_client(app.config.get('REDIS_URL'), app.config.get('REDIS_TLS_ENABLED'))
        app.extensions['redis'] = redis_client
        publisher = RedisFanoutPublisher(redis_client)
        relay = RedisRoomRelay(redis_client, hub)
        try:
            relay.start()
        except Exception as e:
            app.logger.warning(f"⚠️  Fan-out relay not started (will miss pushes until restart): {str(e)}")
        app.extensions['fanout_relay'] = relay
    else:
        raise ValueError(f"Unknown REALTIME_BACKEND: {backend}")

    app.extensions['fanout_hub'] = hub
    app.extensions['fanout'] = publisher
    return publisher


def get_room_hub():
    return current_app.extensions['fanout_hub']
