"""
Pytest fixtures for the order lifecycle service.
"""

from decimal import Decimal

import pytest

from app import create_app
from app.config import TestConfig
from db.extensions import db
from models.menuItem import MenuItem
from models.table import Table
from models.user import User
from services.auth import issue_token
from services.fanout import FanoutPublisher
from services.order_service import get_order_service


class RecordingPublisher(FanoutPublisher):
    """Keeps every publish in order so tests can assert on it."""

    def __init__(self):
        self.events = []

    def publish(self, room, event, payload):
        self.events.append((room, event, payload))

    def named(self, event, room=None):
        return [
            payload for r, e, payload in self.events
            if e == event and (room is None or r == room)
        ]

    def rooms_for(self, event):
        return [r for r, e, _ in self.events if e == event]

    def clear(self):
        self.events = []


class FailingPublisher(FanoutPublisher):
    def publish(self, room, event, payload):
        raise ConnectionError("fan-out unavailable")


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def publisher(app):
    """Swap the coordinator's publisher for a recorder."""
    recorder = RecordingPublisher()
    app.extensions['order_service'].publisher = recorder
    return recorder


@pytest.fixture
def service(app, publisher):
    return get_order_service()


def _make_user(username, role, user_id=None, vendor_id=None, restaurant_name=None, is_active=True):
    user = User(
        id=user_id,
        username=username,
        email=f"{username}@example.com",
        role=role,
        vendor_id=vendor_id,
        restaurant_name=restaurant_name,
        is_active=is_active,
    )
    user.set_password('password123')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def vendor(app):
    return _make_user('momo_house', User.ROLE_VENDOR, user_id=7, restaurant_name='Momo House')


@pytest.fixture
def other_vendor(app):
    return _make_user('pizza_corner', User.ROLE_VENDOR, user_id=8, restaurant_name='Pizza Corner')


@pytest.fixture
def staff(vendor):
    return _make_user('waiter_ram', User.ROLE_STAFF, user_id=20, vendor_id=vendor.id)


@pytest.fixture
def orphan_staff(app):
    return _make_user('waiter_lost', User.ROLE_STAFF, user_id=21)


@pytest.fixture
def admin(app):
    return _make_user('root_admin', User.ROLE_ADMIN, user_id=22)


@pytest.fixture
def menu_items(vendor, other_vendor):
    """Burger 250.00, Momo 100.00, an unavailable Thukpa and another vendor's Pizza."""
    items = {
        'burger': MenuItem(vendor_id=vendor.id, name='Burger', price=Decimal('250.00'), category='Mains'),
        'momo': MenuItem(vendor_id=vendor.id, name='Momo', price=Decimal('100.00'), category='Snacks'),
        'thukpa': MenuItem(vendor_id=vendor.id, name='Thukpa', price=Decimal('180.00'), is_available=False),
        'pizza': MenuItem(vendor_id=other_vendor.id, name='Pizza', price=Decimal('500.00')),
    }
    db.session.add_all(items.values())
    db.session.commit()
    return items


@pytest.fixture
def table(vendor):
    t = Table(vendor_id=vendor.id, name='T1', qr_code='qr-t1')
    db.session.add(t)
    db.session.commit()
    return t


@pytest.fixture
def other_table(other_vendor):
    t = Table(vendor_id=other_vendor.id, name='T1', qr_code='qr-other-t1')
    db.session.add(t)
    db.session.commit()
    return t


def bearer(user):
    return {'Authorization': f"Bearer {issue_token(user)}"}


@pytest.fixture
def vendor_headers(vendor):
    return bearer(vendor)


@pytest.fixture
def staff_headers(staff):
    return bearer(staff)


@pytest.fixture
def other_vendor_headers(other_vendor):
    return bearer(other_vendor)


@pytest.fixture
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture
def table_order(service, vendor, menu_items, table):
    """A pending order at T1: 2 x Burger + 1 x Momo = 600.00."""
    return service.create_order(
        vendor_id=vendor.id,
        items=[{'id': menu_items['burger'].id, 'quantity': 2}, {'id': menu_items['momo'].id, 'quantity': 1}],
        table_identifier=table.qr_code,
    )


def advance(service, order, user, *statuses):
    for status in statuses:
        service.update_status(order.id, status, user)
    return order
