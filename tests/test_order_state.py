"""
Tests for the order status graph and notification table.
"""

import pytest

from services.errors import InvalidInput, InvalidTransition
from services.order_state import (
    OrderStatus, TRANSITIONS, OPEN_STATUSES, TERMINAL_STATUSES,
    POLICY_STRICT, POLICY_RELAXED, NotificationPolicy,
    can_transition, check_transition, is_terminal, is_valid_status,
)


class TestTransitionGraph:
    """The graph itself."""

    @pytest.mark.parametrize('current,requested', [
        ('pending', 'accepted'),
        ('pending', 'rejected'),
        ('accepted', 'confirmed'),
        ('accepted', 'cancelled'),
        ('confirmed', 'preparing'),
        ('preparing', 'ready'),
        ('ready', 'delivered'),
        ('ready', 'cancelled'),
        ('delivered', 'completed'),
    ])
    def test_allowed_moves(self, current, requested):
        assert can_transition(current, requested)

    @pytest.mark.parametrize('current,requested', [
        ('pending', 'preparing'),
        ('pending', 'completed'),
        ('preparing', 'pending'),
        ('delivered', 'cancelled'),
        ('completed', 'pending'),
        ('cancelled', 'accepted'),
        ('rejected', 'accepted'),
    ])
    def test_forbidden_moves(self, current, requested):
        assert not can_transition(current, requested)

    def test_no_self_transitions(self):
        for status in OrderStatus.ALL:
            assert not can_transition(status, status)

    def test_terminal_statuses_have_no_successors(self):
        for status in TERMINAL_STATUSES:
            assert TRANSITIONS[status] == frozenset()
            assert is_terminal(status)

    def test_every_status_is_in_the_graph(self):
        assert set(TRANSITIONS) == set(OrderStatus.ALL)
        for successors in TRANSITIONS.values():
            assert successors <= set(OrderStatus.ALL)

    def test_unknown_current_status_has_no_moves(self):
        assert not can_transition('teleported', 'pending')

    def test_open_set(self):
        assert OPEN_STATUSES == {'pending', 'accepted', 'confirmed', 'preparing'}
        assert not OPEN_STATUSES & TERMINAL_STATUSES

    def test_is_valid_status(self):
        assert is_valid_status('ready')
        assert not is_valid_status('READY')
        assert not is_valid_status(None)


class TestCheckTransition:

    def test_strict_accepts_graph_move(self):
        check_transition('pending', 'accepted', policy=POLICY_STRICT)

    def test_strict_rejects_skip(self):
        with pytest.raises(InvalidTransition) as exc:
            check_transition('pending', 'preparing', policy=POLICY_STRICT)
        assert exc.value.current == 'pending'
        assert exc.value.requested == 'preparing'
        assert exc.value.status_code == 400

    def test_unknown_literal_is_invalid_input_not_transition(self):
        with pytest.raises(InvalidInput) as exc:
            check_transition('pending', 'on-the-way')
        assert not isinstance(exc.value, InvalidTransition)
        assert 'pending' in exc.value.details['validStatuses']

    def test_relaxed_accepts_any_known_literal(self):
        check_transition('completed', 'pending', policy=POLICY_RELAXED)
        check_transition('pending', 'delivered', policy=POLICY_RELAXED)

    def test_relaxed_still_rejects_unknown_literal(self):
        with pytest.raises(InvalidInput):
            check_transition('pending', 'lost', policy=POLICY_RELAXED)

    def test_force_allows_backward_move(self):
        check_transition('cancelled', 'preparing', policy=POLICY_STRICT, force=True)

    def test_force_refuses_noop(self):
        with pytest.raises(InvalidTransition):
            check_transition('ready', 'ready', force=True)

    def test_unknown_policy(self):
        with pytest.raises(ValueError):
            check_transition('pending', 'accepted', policy='yolo')


class TestNotificationPolicy:

    def test_status_notification_shape(self):
        payload = NotificationPolicy.for_status(42, 'pending', 'accepted')
        assert payload['id'] == 'order-42-accepted'
        assert payload['type'] == 'order'
        assert payload['title'] == 'Order #42 Accepted'
        assert payload['message'] == 'Order has been accepted'
        assert payload['read'] is False
        assert payload['timestamp'] == payload['created_at']
        assert payload['data'] == {'order_id': 42, 'old_status': 'pending', 'new_status': 'accepted'}

    def test_confirmed_is_not_announced(self):
        assert NotificationPolicy.for_status(42, 'accepted', 'confirmed') is None

    @pytest.mark.parametrize('status', ['accepted', 'rejected', 'preparing', 'ready', 'delivered', 'completed', 'cancelled'])
    def test_announced_statuses(self, status):
        assert NotificationPolicy.for_status(1, 'pending', status) is not None

    def test_event_notifications(self):
        created = NotificationPolicy.for_event('created', 5, source='T1', data={'table_name': 'T1'})
        assert created['message'] == 'New order #5 from T1'
        assert created['data'] == {'order_id': 5, 'table_name': 'T1'}

        payment = NotificationPolicy.for_event('payment', 5, method='esewa')
        assert payment['type'] == 'payment'
        assert payment['id'] == 'order-5-payment'

        issue = NotificationPolicy.for_event('issue', 5)
        assert issue['title'] == 'Delivery Issue Reported'

        verified = NotificationPolicy.for_event('verified', 5)
        assert verified['type'] == 'verification'
