"""
Connection request tests: request, accept/reject, delete and listing
"""
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError

from app import db
from connection_utils import ConnectionManager
from error_handlers import ValidationError, AuthenticationError, ConflictError
from models import Connection, Notification, ConnectionStatus, NotificationType, make_pair_key

pytestmark = pytest.mark.integration


def _pending(client, user_id):
    response = client.get(f'/api/users/{user_id}/connections?status=PENDING')
    assert response.status_code == 200
    return response.get_json()


class TestRequestConnection:
    """POST /api/users/<id>/connection"""

    def test_request_creates_single_pending_row(self, alice_client, bob_client, alice, bob):
        """Both sides see exactly one PENDING connection linking them"""
        response = alice_client.post(f'/api/users/{bob.id}/connection')
        assert response.status_code == 201
        connection = response.get_json()['connection']
        assert connection['status'] == 'PENDING'
        assert connection['sender_id'] == alice.id
        assert connection['receiver_id'] == bob.id

        alice_view = _pending(alice_client, alice.id)
        bob_view = _pending(bob_client, bob.id)
        assert [c['id'] for c in alice_view['sent']] == [connection['id']]
        assert alice_view['received'] == []
        assert [c['id'] for c in bob_view['received']] == [connection['id']]
        assert bob_view['sent'] == []

    def test_self_request_rejected(self, alice_client, alice):
        response = alice_client.post(f'/api/users/{alice.id}/connection')
        assert response.status_code == 400
        data = response.get_json()
        assert data['success'] is False
        assert data['message'] == 'Cannot connect with yourself'
        assert Connection.query.count() == 0

    def test_unknown_receiver(self, alice_client):
        response = alice_client.post('/api/users/9999/connection')
        assert response.status_code == 404
        assert response.get_json()['message'] == 'User not found'

    def test_duplicate_request_in_either_direction(self, alice_client, bob_client, alice, bob):
        """A second request for the same pair is refused whoever sends it"""
        assert alice_client.post(f'/api/users/{bob.id}/connection').status_code == 201

        again = alice_client.post(f'/api/users/{bob.id}/connection')
        reverse = bob_client.post(f'/api/users/{alice.id}/connection')

        for response in (again, reverse):
            assert response.status_code == 400
            assert response.get_json()['message'] == 'Connection already exists'
        assert Connection.query.count() == 1

    def test_request_notifies_receiver(self, alice_client, alice, bob, relay_events):
        alice_client.post(f'/api/users/{bob.id}/connection')

        notification = Notification.query.filter_by(user_id=bob.id).one()
        assert notification.notification_type == NotificationType.CONNECTION_REQUEST.value
        assert notification.message == 'Alice sent you a connection request'
        assert notification.link == f'/profile/{alice.id}'

        assert (f'private-user-{bob.id}', 'notification') in [(c, e) for c, e, _ in relay_events]
        payload = [p for c, e, p in relay_events if e == 'notification'][0]
        assert payload['id'] == notification.id
        assert payload['type'] == 'CONNECTION_REQUEST'

    def test_requires_authentication(self, client, bob):
        response = client.post(f'/api/users/{bob.id}/connection')
        assert response.status_code == 401

    def test_deleted_sender_unauthenticated(self, login_as, db_session, bob):
        ghost_client = login_as(SimpleNamespace(id=9999, name='Ghost', role='USER'))

        response = ghost_client.post(f'/api/users/{bob.id}/connection')

        assert response.status_code == 401
        assert response.get_json()['message'] == 'User account no longer exists'
        assert Connection.query.count() == 0
        assert Notification.query.count() == 0


class TestRespondToConnection:
    """PATCH /api/users/<sender>/connection with {action}"""

    def test_accept(self, alice_client, bob_client, alice, bob):
        alice_client.post(f'/api/users/{bob.id}/connection')

        response = bob_client.patch(f'/api/users/{alice.id}/connection', json={'action': 'accept'})
        assert response.status_code == 200
        assert response.get_json()['connection']['status'] == 'ACCEPTED'

        notification = Notification.query.filter_by(user_id=alice.id).one()
        assert notification.notification_type == NotificationType.CONNECTION_ACCEPTED.value
        assert notification.message == 'Bob accepted your connection request'

    def test_reject(self, alice_client, bob_client, alice, bob):
        alice_client.post(f'/api/users/{bob.id}/connection')

        response = bob_client.patch(f'/api/users/{alice.id}/connection', json={'action': 'reject'})
        assert response.status_code == 200
        assert response.get_json()['connection']['status'] == 'REJECTED'

        notification = Notification.query.filter_by(user_id=alice.id).one()
        assert notification.notification_type == NotificationType.CONNECTION_REJECTED.value
        assert notification.message == 'Bob declined your connection request'

    def test_sender_cannot_accept_own_request(self, alice_client, alice, bob):
        """Only the receiver may answer"""
        alice_client.post(f'/api/users/{bob.id}/connection')

        response = alice_client.patch(f'/api/users/{bob.id}/connection', json={'action': 'accept'})
        assert response.status_code == 404
        assert response.get_json()['message'] == 'No pending connection request found from this user'

        db.session.expire_all()
        assert Connection.query.one().status == ConnectionStatus.PENDING.value

    def test_no_connection(self, bob_client, alice):
        response = bob_client.patch(f'/api/users/{alice.id}/connection', json={'action': 'accept'})
        assert response.status_code == 404
        assert response.get_json()['message'] == 'No connection exists between these users'

    def test_invalid_action(self, alice_client, bob_client, alice, bob):
        alice_client.post(f'/api/users/{bob.id}/connection')
        response = bob_client.patch(f'/api/users/{alice.id}/connection', json={'action': 'maybe'})
        assert response.status_code == 400

    def test_self_target(self, alice_client, alice):
        response = alice_client.patch(f'/api/users/{alice.id}/connection', json={'action': 'accept'})
        assert response.status_code == 400

    def test_answered_request_cannot_be_answered_again(self, alice_client, bob_client, alice, bob):
        alice_client.post(f'/api/users/{bob.id}/connection')
        bob_client.patch(f'/api/users/{alice.id}/connection', json={'action': 'accept'})

        response = bob_client.patch(f'/api/users/{alice.id}/connection', json={'action': 'reject'})
        assert response.status_code == 404

        db.session.expire_all()
        assert Connection.query.one().status == ConnectionStatus.ACCEPTED.value

    def test_deleted_responder_unauthenticated(self, db_session, alice, bob):
        ConnectionManager.request_connection(db, alice.id, bob.id)

        with pytest.raises(AuthenticationError):
            ConnectionManager.respond_to_connection(db, 9999, alice.id, 'accept')

        db.session.expire_all()
        assert Connection.query.one().status == ConnectionStatus.PENDING.value
        assert Notification.query.filter_by(user_id=alice.id).count() == 0


@pytest.mark.race
class TestConcurrentResponse:
    """Accept/reject is a compare-and-swap on status='PENDING'"""

    def test_stale_pending_read_conflicts(self, db_session, alice, bob, monkeypatch):
        """A responder that read PENDING after another response committed gets a 409"""
        connection = ConnectionManager.request_connection(db, alice.id, bob.id)
        connection_id = connection.id
        ConnectionManager.respond_to_connection(db, bob.id, alice.id, 'accept')

        stale = SimpleNamespace(id=connection_id, sender_id=alice.id, status=ConnectionStatus.PENDING.value)
        monkeypatch.setattr(ConnectionManager, 'get_connection', staticmethod(lambda db, a, b: stale))

        with pytest.raises(ConflictError):
            ConnectionManager.respond_to_connection(db, bob.id, alice.id, 'reject')

        db_session.expire_all()
        assert db_session.get(Connection, connection_id).status == ConnectionStatus.ACCEPTED.value
        # Only the winning transition produced a notification for the sender
        assert Notification.query.filter_by(user_id=alice.id).count() == 1

    def test_conflict_maps_to_409(self, alice_client, bob_client, alice, bob, monkeypatch):
        alice_client.post(f'/api/users/{bob.id}/connection')
        bob_client.patch(f'/api/users/{alice.id}/connection', json={'action': 'accept'})

        connection_id = Connection.query.one().id
        stale = SimpleNamespace(id=connection_id, sender_id=alice.id, status=ConnectionStatus.PENDING.value)
        monkeypatch.setattr(ConnectionManager, 'get_connection', staticmethod(lambda db, a, b: stale))

        response = bob_client.patch(f'/api/users/{alice.id}/connection', json={'action': 'reject'})
        assert response.status_code == 409
        assert response.get_json()['message'] == 'Connection request was already answered'

    def test_pair_key_blocks_second_row(self, db_session, alice, bob):
        """The unordered pair key rejects a second row even without the service checks"""
        db_session.add(Connection(sender_id=alice.id, receiver_id=bob.id))
        db_session.commit()

        db_session.add(Connection(sender_id=bob.id, receiver_id=alice.id))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

        assert Connection.query.one().pair_key == make_pair_key(bob.id, alice.id)


class TestRejectedRestart:
    """REJECTED -> deleted -> PENDING"""

    def test_rejected_connection_superseded_once(self, alice_client, bob_client, alice, bob):
        alice_client.post(f'/api/users/{bob.id}/connection')
        bob_client.patch(f'/api/users/{alice.id}/connection', json={'action': 'reject'})

        response = bob_client.post(f'/api/users/{alice.id}/connection')
        assert response.status_code == 201
        connection = response.get_json()['connection']
        assert connection['sender_id'] == bob.id
        assert connection['status'] == 'PENDING'

        second = alice_client.post(f'/api/users/{bob.id}/connection')
        assert second.status_code == 400

        connections = Connection.query.all()
        assert len(connections) == 1
        assert connections[0].status == ConnectionStatus.PENDING.value

    def test_manager_replaces_rejected_row(self, db_session, alice, bob):
        ConnectionManager.request_connection(db, alice.id, bob.id)
        ConnectionManager.respond_to_connection(db, bob.id, alice.id, 'reject')

        second = ConnectionManager.request_connection(db, alice.id, bob.id)
        assert second.id is not None
        assert Connection.query.count() == 1
        assert Connection.query.one().status == ConnectionStatus.PENDING.value

    def test_accepted_connection_blocks_new_request(self, db_session, alice, bob):
        ConnectionManager.request_connection(db, alice.id, bob.id)
        ConnectionManager.respond_to_connection(db, bob.id, alice.id, 'accept')

        with pytest.raises(ValidationError):
            ConnectionManager.request_connection(db, bob.id, alice.id)


class TestDeleteConnection:
    """DELETE /api/users/<id>/connection?connection_id="""

    def test_participant_can_delete(self, alice_client, bob_client, alice, bob):
        connection_id = alice_client.post(f'/api/users/{bob.id}/connection').get_json()['connection']['id']

        response = bob_client.delete(f'/api/users/{alice.id}/connection?connection_id={connection_id}')
        assert response.status_code == 200
        assert Connection.query.count() == 0

    def test_missing_id(self, alice_client, bob):
        response = alice_client.delete(f'/api/users/{bob.id}/connection')
        assert response.status_code == 400
        assert response.get_json()['message'] == 'Connection ID is required'

    def test_unknown_id(self, alice_client, bob):
        response = alice_client.delete(f'/api/users/{bob.id}/connection?connection_id=4242')
        assert response.status_code == 404
        assert response.get_json()['message'] == 'Connection not found'

    def test_outsider_forbidden(self, alice_client, carol_client, alice, bob):
        connection_id = alice_client.post(f'/api/users/{bob.id}/connection').get_json()['connection']['id']

        response = carol_client.delete(f'/api/users/{bob.id}/connection?connection_id={connection_id}')
        assert response.status_code == 403
        assert response.get_json()['message'] == 'Not authorized to delete this connection'
        assert Connection.query.count() == 1


class TestGetAndListConnections:

    def test_get_connection_either_direction(self, alice_client, bob_client, alice, bob):
        alice_client.post(f'/api/users/{bob.id}/connection')

        from_alice = alice_client.get(f'/api/users/{bob.id}/connection').get_json()['connection']
        from_bob = bob_client.get(f'/api/users/{alice.id}/connection').get_json()['connection']
        assert from_alice['id'] == from_bob['id']

    def test_get_connection_none(self, alice_client, bob):
        response = alice_client.get(f'/api/users/{bob.id}/connection')
        assert response.status_code == 200
        assert response.get_json()['connection'] is None

    def test_list_filters_by_status(self, alice_client, bob_client, carol_client, alice, bob, carol):
        alice_client.post(f'/api/users/{bob.id}/connection')
        carol_client.post(f'/api/users/{alice.id}/connection')
        bob_client.patch(f'/api/users/{alice.id}/connection', json={'action': 'accept'})

        accepted = alice_client.get(f'/api/users/{alice.id}/connections?status=ACCEPTED').get_json()
        assert [c['receiver_id'] for c in accepted['connections']] == [bob.id]

        everything = alice_client.get(f'/api/users/{alice.id}/connections').get_json()
        assert len(everything['connections']) == 2

        pending = _pending(alice_client, alice.id)
        assert pending['sent'] == []
        assert [c['sender_id'] for c in pending['received']] == [carol.id]

    def test_invalid_status(self, alice_client, alice):
        response = alice_client.get(f'/api/users/{alice.id}/connections?status=BLOCKED')
        assert response.status_code == 400
