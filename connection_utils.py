"""
Connection request utilities for TourismIQ

A connection is a directed request between two users that moves
PENDING -> ACCEPTED or PENDING -> REJECTED. There is at most one row per
unordered pair (enforced by Connection.pair_key); a REJECTED row is deleted
when either user sends a fresh request.

Accept/reject is applied with a conditional UPDATE on status='PENDING', so
of two concurrent responses exactly one wins and the other gets a 409.
"""

import logging
from datetime import datetime
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from error_handlers import ValidationError, AuthenticationError, NotFoundError, AuthorizationError, ConflictError
from notification_utils import NotificationManager

logger = logging.getLogger(__name__)

CONNECTION_ACTIONS = ('accept', 'reject')


def _display_name(user):
    return user.name or 'Someone'


def _session_user(db, user_id):
    """The acting user; a session outliving its account is no longer authenticated"""
    from models import User

    user = db.session.get(User, user_id)
    if user is None:
        logger.warning(f"Session user {user_id} no longer exists")
        raise AuthenticationError('User account no longer exists')
    return user


class ConnectionManager:
    """Manager class for the connection request state machine"""

    @staticmethod
    def get_connection(db, user_id: int, other_user_id: int):
        """Connection between the pair in either direction, or None"""
        from models import Connection, make_pair_key

        return Connection.query.filter_by(pair_key=make_pair_key(user_id, other_user_id)).first()

    @staticmethod
    def request_connection(db, sender_id: int, receiver_id: int):
        """
        Send a connection request from sender_id to receiver_id

        Returns:
            The new PENDING Connection

        Raises:
            ValidationError: self-request, or a PENDING/ACCEPTED connection exists
            AuthenticationError: the sending account no longer exists
            NotFoundError: receiver does not exist
        """
        from models import User, Connection, ConnectionStatus, NotificationType

        if sender_id == receiver_id:
            raise ValidationError('Cannot connect with yourself')

        sender = _session_user(db, sender_id)
        receiver = db.session.get(User, receiver_id)
        if receiver is None:
            raise NotFoundError('User not found')

        existing = ConnectionManager.get_connection(db, sender_id, receiver_id)
        if existing is not None:
            if existing.status != ConnectionStatus.REJECTED.value:
                raise ValidationError('Connection already exists', details={'status': existing.status})

            logger.info(f"Replacing rejected connection {existing.id} between {sender_id} and {receiver_id}")
            db.session.delete(existing)
            # Flush the delete so the insert below does not collide on pair_key
            db.session.flush()

        connection = Connection(
            sender_id=sender_id,
            receiver_id=receiver_id,
            status=ConnectionStatus.PENDING.value
        )

        try:
            db.session.add(connection)
            db.session.flush()
            notification = NotificationManager.create_notification(
                db,
                receiver_id,
                NotificationType.CONNECTION_REQUEST.value,
                f"{_display_name(sender)} sent you a connection request",
                link=f"/profile/{sender_id}",
                commit=False
            )
            db.session.commit()
        except IntegrityError:
            # A concurrent request for the same pair committed first
            db.session.rollback()
            logger.warning(f"Duplicate connection request between {sender_id} and {receiver_id}")
            raise ValidationError('Connection already exists')

        logger.info(f"Connection request {connection.id}: {sender_id} -> {receiver_id}")
        NotificationManager.deliver(notification)
        return connection

    @staticmethod
    def respond_to_connection(db, user_id: int, sender_id: int, action: str):
        """
        Accept or reject the PENDING request sent by sender_id to user_id

        Returns:
            The updated Connection

        Raises:
            ValidationError: self-target or unknown action
            AuthenticationError: the responding account no longer exists
            NotFoundError: no connection, or no pending request from sender_id
            ConflictError: the request was answered concurrently
        """
        from models import Connection, ConnectionStatus, NotificationType

        if user_id == sender_id:
            raise ValidationError('Cannot connect with yourself')

        if action not in CONNECTION_ACTIONS:
            raise ValidationError('Invalid action', details={'allowed': list(CONNECTION_ACTIONS)})

        responder = _session_user(db, user_id)

        connection = ConnectionManager.get_connection(db, user_id, sender_id)
        if connection is None:
            raise NotFoundError('No connection exists between these users')

        if connection.sender_id != sender_id or connection.status != ConnectionStatus.PENDING.value:
            raise NotFoundError('No pending connection request found from this user')

        if action == 'accept':
            new_status = ConnectionStatus.ACCEPTED.value
            notification_type = NotificationType.CONNECTION_ACCEPTED.value
            verb = 'accepted'
        else:
            new_status = ConnectionStatus.REJECTED.value
            notification_type = NotificationType.CONNECTION_REJECTED.value
            verb = 'declined'

        connection_id = connection.id
        updated = Connection.query.filter_by(
            id=connection_id,
            status=ConnectionStatus.PENDING.value
        ).update({'status': new_status, 'updated_at': datetime.utcnow()}, synchronize_session=False)

        if updated == 0:
            db.session.rollback()
            logger.warning(f"Connection {connection_id} was answered concurrently; {action} by {user_id} lost")
            raise ConflictError('Connection request was already answered')

        notification = NotificationManager.create_notification(
            db,
            sender_id,
            notification_type,
            f"{_display_name(responder)} {verb} your connection request",
            link=f"/profile/{user_id}",
            commit=False
        )
        db.session.commit()

        logger.info(f"Connection {connection_id} {new_status} by user {user_id}")
        NotificationManager.deliver(notification)
        return db.session.get(Connection, connection_id)

    @staticmethod
    def delete_connection(db, user_id: int, connection_id):
        """
        Delete a connection the user takes part in

        Raises:
            ValidationError: connection_id missing
            NotFoundError: no such connection
            AuthorizationError: user is neither sender nor receiver
        """
        from models import Connection

        if not connection_id:
            raise ValidationError('Connection ID is required')

        connection = db.session.get(Connection, connection_id)
        if connection is None:
            raise NotFoundError('Connection not found')

        if not connection.involves(user_id):
            logger.warning(f"User {user_id} denied deleting connection {connection_id}")
            raise AuthorizationError('Not authorized to delete this connection')

        db.session.delete(connection)
        db.session.commit()
        logger.info(f"Connection {connection_id} deleted by user {user_id}")
        return True

    @staticmethod
    def list_connections(db, user_id: int, status=None):
        """
        Connections where user_id is sender or receiver, newest update first

        Returns:
            {'sent': [...], 'received': [...]} when status is PENDING,
            otherwise {'connections': [...]}
        """
        from models import Connection, ConnectionStatus

        allowed = [s.value for s in ConnectionStatus]
        if status is not None and status not in allowed:
            raise ValidationError('Invalid status parameter', details={'allowed': allowed})

        query = Connection.query.filter(
            or_(Connection.sender_id == user_id, Connection.receiver_id == user_id)
        )
        if status:
            query = query.filter(Connection.status == status)

        connections = query.order_by(Connection.updated_at.desc(), Connection.id.desc()).all()

        if status == ConnectionStatus.PENDING.value:
            return {
                'sent': [c.to_dict() for c in connections if c.sender_id == user_id],
                'received': [c.to_dict() for c in connections if c.receiver_id == user_id],
            }

        return {'connections': [c.to_dict() for c in connections]}
