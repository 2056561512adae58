"""
Notification Utilities for TourismIQ
Handles creation, management, and live delivery of in-app notifications.

Notifications are always persisted; the live `notification` event is a
best-effort hint sent after the row is committed.
"""

import logging
from typing import Optional
from datetime import datetime, timedelta
from sqlalchemy import and_
from sqlalchemy.exc import SQLAlchemyError

from error_handlers import NotFoundError, AuthorizationError
from realtime import relay, EVENT_NOTIFICATION

logger = logging.getLogger(__name__)


class NotificationManager:
    """Manager class for handling notifications"""

    @staticmethod
    def create_notification(
        db,
        user_id: int,
        notification_type: str,
        message: str,
        link: Optional[str] = None,
        commit: bool = True
    ):
        """
        Create a new notification for a user

        Args:
            db: Database session
            user_id: ID of the user to notify
            notification_type: One of models.NotificationType values
            message: Notification message
            link: Optional link to related page
            commit: Commit and deliver immediately. When False the row is only
                flushed; the caller commits its own unit of work and then
                calls deliver().

        Returns:
            Notification object
        """
        from models import Notification

        notification = Notification(
            user_id=user_id,
            notification_type=notification_type,
            message=message,
            link=link
        )

        try:
            db.session.add(notification)
            if commit:
                db.session.commit()
            else:
                db.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error creating notification for user {user_id}: {e}", exc_info=True)
            db.session.rollback()
            raise

        logger.info(f"Notification created for user {user_id}: {notification_type}")

        if commit:
            NotificationManager.deliver(notification)
        return notification

    @staticmethod
    def deliver(notification):
        """Push a committed notification to its owner's live channel"""
        return relay.publish_to_user(notification.user_id, EVENT_NOTIFICATION, notification.to_dict())

    @staticmethod
    def get_user_notifications(
        db,
        user_id: int,
        unread_only: bool = False,
        limit: int = 50
    ):
        """
        Get notifications for a user, newest first

        Args:
            db: Database session
            user_id: User ID
            unread_only: If True, only return unread notifications
            limit: Maximum number of notifications to return

        Returns:
            List of Notification objects
        """
        from models import Notification

        query = Notification.query.filter_by(user_id=user_id)

        if unread_only:
            query = query.filter_by(is_read=False)

        return query.order_by(
            Notification.created_at.desc(),
            Notification.id.desc()
        ).limit(limit).all()

    @staticmethod
    def get_unread_count(db, user_id: int):
        """Get count of unread notifications for a user"""
        from models import Notification

        return Notification.query.filter_by(
            user_id=user_id,
            is_read=False
        ).count()

    @staticmethod
    def _get_owned(db, notification_id: int, user_id: int):
        from models import Notification

        notification = db.session.get(Notification, notification_id)
        if notification is None:
            raise NotFoundError('Notification not found')
        if notification.user_id != user_id:
            logger.warning(f"User {user_id} denied access to notification {notification_id}")
            raise AuthorizationError('Not authorized to access this notification')
        return notification

    @staticmethod
    def mark_as_read(db, notification_id: int, user_id: int):
        """
        Mark a notification as read

        Args:
            db: Database session
            notification_id: Notification ID
            user_id: User ID (for ownership check)

        Returns:
            The updated Notification

        Raises:
            NotFoundError: no such notification
            AuthorizationError: notification belongs to another user
        """
        notification = NotificationManager._get_owned(db, notification_id, user_id)
        notification.mark_as_read()
        db.session.commit()
        logger.info(f"Notification {notification_id} marked as read for user {user_id}")
        return notification

    @staticmethod
    def mark_all_as_read(db, user_id: int):
        """
        Mark all notifications as read for a user

        Returns:
            Number of notifications marked as read
        """
        from models import Notification

        count = Notification.query.filter_by(
            user_id=user_id,
            is_read=False
        ).update({'is_read': True, 'read_at': datetime.utcnow()}, synchronize_session=False)

        db.session.commit()
        logger.info(f"Marked {count} notifications as read for user {user_id}")
        return count

    @staticmethod
    def delete_notification(db, notification_id: int, user_id: int):
        """Delete a notification owned by user_id"""
        notification = NotificationManager._get_owned(db, notification_id, user_id)
        db.session.delete(notification)
        db.session.commit()
        logger.info(f"Notification {notification_id} deleted for user {user_id}")
        return True

    @staticmethod
    def cleanup_old_notifications(db, days: int = 30):
        """
        Delete read notifications older than specified days

        Args:
            db: Database session
            days: Number of days to keep read notifications

        Returns:
            Number of notifications deleted
        """
        try:
            from models import Notification

            cutoff_date = datetime.utcnow() - timedelta(days=days)

            count = Notification.query.filter(
                and_(
                    Notification.is_read.is_(True),
                    Notification.created_at < cutoff_date
                )
            ).delete(synchronize_session=False)

            db.session.commit()
            logger.info(f"Cleaned up {count} old notifications (older than {days} days)")
            return count

        except SQLAlchemyError as e:
            logger.error(f"Error cleaning up notifications: {e}", exc_info=True)
            db.session.rollback()
            return 0
