"""
Real-time relay over Pusher Channels

Mirrors selected server-side mutations to the browser sessions of the users
they concern. Each user has a private channel `private-user-{id}` that only
that user's session may subscribe to; the subscription token is signed by
authorize_channel().

Delivery is best-effort and at-most-once: a failed trigger is logged and
dropped, never retried or queued, and never fails the request that caused
it. Every payload published here is also served by a REST endpoint, so
clients treat live events as a hint to refresh, not as the source of truth.
"""

import logging

import pusher

from error_handlers import ValidationError, AuthorizationError, ServiceUnavailableError

logger = logging.getLogger(__name__)

USER_CHANNEL_PREFIX = 'private-user-'
USER_UPDATES_CHANNEL = 'user-updates'

EVENT_NEW_MESSAGE = 'new-message'
EVENT_NOTIFICATION = 'notification'
PROFILE_IMAGE_UPDATE = 'PROFILE_IMAGE_UPDATE'


def user_channel(user_id):
    """Name of the private channel owned by user_id"""
    return f"{USER_CHANNEL_PREFIX}{user_id}"


def profile_update_event(user_id):
    """Event name broadcast on USER_UPDATES_CHANNEL when user_id changes their image"""
    return f"profile-update-{user_id}"


class RealtimeRelay:
    """Thin wrapper around a pusher.Pusher client, registered as a Flask extension"""

    def __init__(self, app=None):
        self.client = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        app_id = app.config.get('PUSHER_APP_ID')
        key = app.config.get('PUSHER_KEY')
        secret = app.config.get('PUSHER_SECRET')

        if app_id and key and secret:
            try:
                self.client = pusher.Pusher(
                    app_id=str(app_id),
                    key=key,
                    secret=secret,
                    cluster=app.config.get('PUSHER_CLUSTER') or 'mt1',
                    ssl=True
                )
                logger.info(f"Realtime relay enabled (cluster: {app.config.get('PUSHER_CLUSTER')})")
            except (ValueError, TypeError) as e:
                self.client = None
                logger.warning(f"Realtime relay disabled - invalid Pusher credentials: {e}")
        else:
            self.client = None
            logger.warning("Realtime relay disabled - PUSHER_APP_ID/PUSHER_KEY/PUSHER_SECRET not set")

        app.extensions['realtime_relay'] = self

    @property
    def enabled(self):
        return self.client is not None

    def publish(self, channel, event, payload):
        """
        Trigger an event on a channel.

        Args:
            channel: Channel name
            event: Event name
            payload: JSON-serializable dict

        Returns:
            True if the hosted service accepted the event, False otherwise
        """
        if self.client is None:
            logger.debug(f"Relay disabled, dropping {event} on {channel}")
            return False

        try:
            self.client.trigger(channel, event, payload)
            logger.debug(f"Relayed {event} on {channel}")
            return True
        except Exception as e:
            logger.warning(f"Realtime delivery failed for {event} on {channel}: {e}")
            return False

    def publish_to_user(self, user_id, event, payload):
        """Trigger an event on the private channel of user_id"""
        return self.publish(user_channel(user_id), event, payload)

    def publish_profile_image_update(self, user):
        """Broadcast a profile image change on the shared user-updates channel"""
        return self.publish(
            USER_UPDATES_CHANNEL,
            profile_update_event(user.id),
            {'type': PROFILE_IMAGE_UPDATE, 'user': user.to_public_dict()}
        )

    def authorize_channel(self, user_id, channel_name, socket_id):
        """
        Sign a private channel subscription for the session's user.

        Only the exact channel `private-user-{user_id}` is granted; a prefix
        match would let user 1 subscribe to user 12's channel.

        Returns:
            dict with the `auth` signature expected by the Pusher client library
        """
        missing = [name for name, value in (('socket_id', socket_id), ('channel_name', channel_name)) if not value]
        if missing:
            raise ValidationError('socket_id and channel_name are required', details={'missing': missing})

        if channel_name != user_channel(user_id):
            logger.warning(f"Channel authorization refused: user {user_id} asked for {channel_name}")
            raise AuthorizationError('Not authorized to subscribe to this channel')

        if self.client is None:
            raise ServiceUnavailableError('Realtime service is not configured')

        try:
            auth = self.client.authenticate(channel=channel_name, socket_id=socket_id)
        except ValueError as e:
            raise ValidationError('Invalid socket_id or channel_name', details={'reason': str(e)})

        logger.info(f"Authorized channel {channel_name} for user {user_id}")
        return auth


relay = RealtimeRelay()
