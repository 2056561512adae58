"""
Direct messaging utilities for TourismIQ
Conversations are created lazily on the first message between two users.
"""

import logging
from datetime import datetime
from sqlalchemy.exc import IntegrityError

from error_handlers import ValidationError, NotFoundError, AuthorizationError
from realtime import relay, EVENT_NEW_MESSAGE

logger = logging.getLogger(__name__)


class ConversationManager:
    """Manager class for conversations and messages"""

    @staticmethod
    def get_or_create_conversation(db, user_id: int, other_user_id: int):
        """Return the conversation between the two users, creating it if needed"""
        from models import Conversation, User, make_pair_key

        pair_key = make_pair_key(user_id, other_user_id)
        conversation = Conversation.query.filter_by(pair_key=pair_key).first()
        if conversation is not None:
            return conversation

        participants = [db.session.get(User, user_id), db.session.get(User, other_user_id)]
        conversation = Conversation(pair_key=pair_key, participants=participants)
        try:
            db.session.add(conversation)
            db.session.flush()
        except IntegrityError:
            # Created by a concurrent first message
            db.session.rollback()
            logger.info(f"Conversation {pair_key} created concurrently, reusing it")
            conversation = Conversation.query.filter_by(pair_key=pair_key).one()
        else:
            logger.info(f"Conversation {conversation.id} created for {pair_key}")

        return conversation

    @staticmethod
    def send_message(db, sender_id: int, receiver_id: int, content: str):
        """
        Store a message and relay it to the receiver

        Returns:
            The created Message

        Raises:
            ValidationError: empty content or messaging yourself
            NotFoundError: receiver does not exist
        """
        from models import Message, User

        if not content:
            raise ValidationError('Message cannot be empty', details={'field': 'content'})

        if sender_id == receiver_id:
            raise ValidationError('Cannot send a message to yourself')

        if db.session.get(User, receiver_id) is None:
            raise NotFoundError('User not found')

        conversation = ConversationManager.get_or_create_conversation(db, sender_id, receiver_id)

        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content
        )
        db.session.add(message)
        conversation.updated_at = datetime.utcnow()
        db.session.commit()

        logger.info(f"Message {message.id} sent in conversation {conversation.id}")

        payload = message.to_dict()
        relay.publish_to_user(receiver_id, EVENT_NEW_MESSAGE, payload)
        return message

    @staticmethod
    def list_conversations(db, user_id: int):
        """Conversations of the user, most recently active first"""
        from models import Conversation, conversation_participants

        conversations = Conversation.query.join(
            conversation_participants,
            conversation_participants.c.conversation_id == Conversation.id
        ).filter(
            conversation_participants.c.user_id == user_id
        ).order_by(Conversation.updated_at.desc(), Conversation.id.desc()).all()

        return [conversation.to_dict(viewer_id=user_id) for conversation in conversations]

    @staticmethod
    def get_messages(db, user_id: int, conversation_id: int, limit: int = 50):
        """
        Latest messages of a conversation, newest first

        Opening a conversation marks the messages received by user_id as read.
        """
        from models import Conversation, Message

        conversation = db.session.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError('Conversation not found')

        if not conversation.has_participant(user_id):
            logger.warning(f"User {user_id} denied access to conversation {conversation_id}")
            raise AuthorizationError('Not a participant in this conversation')

        messages = conversation.messages.order_by(
            Message.created_at.desc(),
            Message.id.desc()
        ).limit(limit).all()

        if messages:
            marked = Message.query.filter_by(
                conversation_id=conversation_id,
                receiver_id=user_id,
                read=False
            ).update({'read': True}, synchronize_session=False)
            db.session.commit()
            if marked:
                logger.info(f"Marked {marked} messages read in conversation {conversation_id} for user {user_id}")

        return messages

    @staticmethod
    def mark_messages_read(db, user_id: int, message_ids):
        """
        Mark the given messages read; only messages received by user_id change

        Returns:
            Number of messages flipped from unread to read
        """
        from models import Message

        if not isinstance(message_ids, list) or not message_ids:
            raise ValidationError('message_ids must be a non-empty list', details={'field': 'message_ids'})

        try:
            ids = [int(message_id) for message_id in message_ids]
        except (ValueError, TypeError):
            raise ValidationError('message_ids must contain integers', details={'field': 'message_ids'})

        count = Message.query.filter(
            Message.id.in_(ids),
            Message.receiver_id == user_id,
            Message.read.is_(False)
        ).update({'read': True}, synchronize_session=False)
        db.session.commit()
        return count

    @staticmethod
    def get_unread_count(db, user_id: int):
        """Count of unread messages received by the user"""
        from models import Message

        return Message.query.filter_by(receiver_id=user_id, read=False).count()
