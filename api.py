"""
JSON API endpoints for the TourismIQ community.

Handlers validate input, delegate to the *_utils managers and serialize the
result. Domain errors (APIError subclasses) propagate to the handlers in
error_handlers.py; anything else is logged here and answered with a 500.
"""
import logging
from flask import jsonify, request
from flask_wtf.csrf import generate_csrf
from app import app, db, csrf, limiter, get_user_rate_limit_key
from models import User, Profile
from auth_utils import require_auth, create_session, clear_session, get_user_id, get_user_role, get_session_user
from validation_utils import InputValidator, get_json_body, require_fields, clean_text, parse_id
from error_handlers import (
    APIError, ValidationError, AuthenticationError, AuthorizationError, NotFoundError, error_response
)
from connection_utils import ConnectionManager
from messaging_utils import ConversationManager
from notification_utils import NotificationManager
from post_utils import PostManager, UPVOTE_ACTIONS
from realtime import relay

logger = logging.getLogger(__name__)


def _internal_error(message):
    db.session.rollback()
    return error_response(500, 'Internal error', message)


def _get_user_or_404(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError('User not found')
    return user


# =============================================================================
# AUTH ENDPOINTS
# =============================================================================

@app.route('/api/auth/register', methods=['POST'])
@limiter.limit("10 per hour")
def register():
    """Create a user with an empty profile"""
    try:
        data = get_json_body(request)
        require_fields(data, ['name', 'email', 'password'])

        name = clean_text(data, 'name', InputValidator.MAX_NAME_LENGTH, required=True)
        is_valid, error = InputValidator.validate_name(name, app.config['NAME_MIN_LENGTH'])
        if not is_valid:
            raise ValidationError(error, details={'field': 'name'})

        is_valid, error = InputValidator.validate_email(data['email'])
        if not is_valid:
            raise ValidationError(error, details={'field': 'email'})
        email = data['email'].strip().lower()

        is_valid, error = InputValidator.validate_password(data['password'], app.config['PASSWORD_MIN_LENGTH'])
        if not is_valid:
            raise ValidationError(error, details={'field': 'password'})

        if User.query.filter_by(email=email).first():
            raise ValidationError('User already exists', details={'field': 'email'})

        user = User(name=name, email=email)
        user.set_password(data['password'])
        user.profile = Profile(bio='', interests=[])
        db.session.add(user)
        db.session.commit()

        logger.info(f"User registered: {user.id}")
        return jsonify({'success': True, 'user': user.to_dict()}), 201

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Registration error: {str(e)}", exc_info=True)
        return _internal_error('Something went wrong')


@app.route('/api/auth/login', methods=['POST'])
@limiter.limit("20 per minute")
def login():
    try:
        data = get_json_body(request)
        require_fields(data, ['email', 'password'])

        user = User.query.filter_by(email=str(data['email']).strip().lower()).first()
        if user is None or not isinstance(data['password'], str) or not user.check_password(data['password']):
            logger.warning(f"Failed login attempt from {request.remote_addr}")
            raise AuthenticationError('Invalid email or password')

        create_session(user.id, user.name, user.role, email=user.email)
        logger.info(f"User {user.id} logged in")
        return jsonify({'success': True, 'user': user.to_dict()})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Login error: {str(e)}", exc_info=True)
        return _internal_error('Login failed')


@app.route('/api/auth/logout', methods=['POST'])
def logout():
    user_id = get_user_id()
    clear_session()
    if user_id:
        logger.info(f"User {user_id} logged out")
    return jsonify({'success': True})


@app.route('/api/auth/session')
def current_session():
    user = get_session_user()
    return jsonify({'success': True, 'authenticated': user is not None, 'user': user})


@app.route('/api/auth/csrf')
def csrf_token():
    """Token to send back in the X-CSRFToken header on mutating requests"""
    return jsonify({'success': True, 'csrf_token': generate_csrf()})


# =============================================================================
# POST ENDPOINTS
# =============================================================================

@app.route('/api/posts')
@limiter.limit("3000 per minute")
def list_posts():
    """Cursor-paginated feed"""
    try:
        limit = InputValidator.validate_limit(
            request.args.get('limit'), app.config['POSTS_PER_PAGE'], app.config['MAX_POSTS_PER_PAGE']
        )
        page = PostManager.get_feed(
            db,
            cursor=request.args.get('cursor'),
            limit=limit,
            category=request.args.get('category') or None
        )
        return jsonify({'success': True, **page})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Feed error: {str(e)}", exc_info=True)
        return _internal_error('Failed to load posts')


@app.route('/api/posts', methods=['POST'])
@require_auth
@limiter.limit("30 per minute", key_func=get_user_rate_limit_key)
def create_post():
    try:
        post = PostManager.create_post(db, get_user_id(), get_json_body(request))
        return jsonify({'success': True, 'post': post.to_dict()}), 201

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Create post error: {str(e)}", exc_info=True)
        return _internal_error('Failed to create post')


@app.route('/api/posts/<int:post_id>', methods=['DELETE'])
@require_auth
def delete_post(post_id):
    try:
        PostManager.delete_post(db, get_user_id(), get_user_role(), post_id)
        return jsonify({'success': True})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Delete post {post_id} error: {str(e)}", exc_info=True)
        return _internal_error('Failed to delete post')


@app.route('/api/posts/<int:post_id>/comments')
def list_comments(post_id):
    try:
        return jsonify({'success': True, 'comments': PostManager.list_comments(db, post_id)})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"List comments error: {str(e)}", exc_info=True)
        return _internal_error('Failed to fetch comments')


@app.route('/api/posts/<int:post_id>/comments', methods=['POST'])
@require_auth
@limiter.limit("60 per minute", key_func=get_user_rate_limit_key)
def add_comment(post_id):
    try:
        data = get_json_body(request)
        comment = PostManager.add_comment(db, get_user_id(), post_id, data.get('content'))
        return jsonify({'success': True, 'comment': comment.to_dict()}), 201

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Add comment error: {str(e)}", exc_info=True)
        return _internal_error('Failed to create comment')


@app.route('/api/posts/<int:post_id>/upvote', methods=['POST', 'DELETE'])
@require_auth
@limiter.limit("120 per minute", key_func=get_user_rate_limit_key)
def upvote_post(post_id):
    try:
        result = PostManager.set_upvote(db, get_user_id(), post_id, request.method == 'POST')
        return jsonify({'success': True, **result})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Upvote error: {str(e)}", exc_info=True)
        return _internal_error('Failed to update upvote')


@app.route('/api/posts/upvote', methods=['POST'])
@require_auth
@limiter.limit("120 per minute", key_func=get_user_rate_limit_key)
def toggle_upvote():
    """Body: {post_id, action: upvote|remove}"""
    try:
        data = get_json_body(request)
        require_fields(data, ['post_id', 'action'])
        post_id = parse_id(data['post_id'], 'post_id')

        is_valid, error = InputValidator.validate_choice(data['action'], list(UPVOTE_ACTIONS), 'Action')
        if not is_valid:
            raise ValidationError(error, details={'field': 'action'})

        result = PostManager.set_upvote(db, get_user_id(), post_id, data['action'] == 'upvote')
        return jsonify({'success': True, **result})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Upvote error: {str(e)}", exc_info=True)
        return _internal_error('Failed to update upvote')


# =============================================================================
# USER / PROFILE ENDPOINTS
# =============================================================================

@app.route('/api/users/<int:user_id>/posts')
def list_user_posts(user_id):
    try:
        _get_user_or_404(user_id)
        limit = InputValidator.validate_limit(
            request.args.get('limit'), app.config['POSTS_PER_PAGE'], app.config['MAX_POSTS_PER_PAGE']
        )
        page = PostManager.get_feed(db, cursor=request.args.get('cursor'), limit=limit, author_id=user_id)
        return jsonify({'success': True, **page})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"User posts error: {str(e)}", exc_info=True)
        return _internal_error('Failed to load posts')


@app.route('/api/users/<int:user_id>/profile')
def get_profile(user_id):
    try:
        user = _get_user_or_404(user_id)
        return jsonify({'success': True, 'user': user.to_dict()})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Get profile error: {str(e)}", exc_info=True)
        return _internal_error('Failed to load profile')


PROFILE_TEXT_FIELDS = {
    'bio': InputValidator.MAX_TEXT_LENGTH,
    'location': 200,
    'occupation': 200,
}
SOCIAL_LINK_FIELDS = ('facebook', 'twitter', 'linkedin', 'instagram')


def _optional_url(data, field):
    """Empty string clears the value; anything else must be an http(s) URL"""
    value = data.get(field)
    if value in (None, ''):
        return None
    is_valid, error = InputValidator.validate_url(value)
    if not is_valid:
        raise ValidationError(f"Invalid {field}: {error}", details={'field': field})
    return value.strip()


@app.route('/api/users/<int:user_id>/profile', methods=['PATCH'])
@require_auth
def update_profile(user_id):
    """Partial profile update; only keys present in the body change"""
    try:
        if get_user_id() != user_id:
            raise AuthorizationError('You can only edit your own profile')

        user = _get_user_or_404(user_id)
        data = get_json_body(request)

        if 'name' in data:
            name = clean_text(data, 'name', InputValidator.MAX_NAME_LENGTH)
            is_valid, error = InputValidator.validate_name(name, app.config['NAME_MIN_LENGTH'])
            if not is_valid:
                raise ValidationError(error, details={'field': 'name'})
            user.name = name

        if 'business_name' in data:
            user.business_name = clean_text(data, 'business_name', 200) or None
        if 'business_type' in data:
            user.business_type = clean_text(data, 'business_type', 100) or None

        profile = user.profile
        if profile is None:
            profile = Profile(interests=[])
            user.profile = profile

        for field, max_length in PROFILE_TEXT_FIELDS.items():
            if field in data:
                setattr(profile, field, clean_text(data, field, max_length) or None)

        if 'website' in data:
            profile.website = _optional_url(data, 'website')

        if 'interests' in data:
            interests = data['interests']
            if not isinstance(interests, list) or not all(isinstance(i, str) for i in interests):
                raise ValidationError('interests must be a list of strings', details={'field': 'interests'})
            profile.interests = [InputValidator.sanitize_html(i, 100) for i in interests if i.strip()]

        if any(field in data for field in SOCIAL_LINK_FIELDS):
            links = dict(profile.social_links or {})
            for field in SOCIAL_LINK_FIELDS:
                if field in data:
                    links[field] = _optional_url(data, field)
            profile.social_links = links if any(links.values()) else None

        db.session.commit()
        logger.info(f"Profile updated for user {user_id}")
        return jsonify({'success': True, 'user': user.to_dict()})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Update profile error: {str(e)}", exc_info=True)
        return _internal_error('Failed to update profile')


@app.route('/api/users/<int:user_id>/profile/image', methods=['PATCH'])
@require_auth
@limiter.limit("20 per minute", key_func=get_user_rate_limit_key)
def update_profile_image(user_id):
    """Set the profile image URL and broadcast the change"""
    try:
        if get_user_id() != user_id:
            raise AuthorizationError('You can only edit your own profile')

        user = _get_user_or_404(user_id)
        data = get_json_body(request)
        require_fields(data, ['image'])

        is_valid, error = InputValidator.validate_url(data['image'])
        if not is_valid:
            raise ValidationError(f"Invalid image: {error}", details={'field': 'image'})

        user.image = data['image'].strip()
        db.session.commit()

        relay.publish_profile_image_update(user)
        logger.info(f"Profile image updated for user {user_id}")
        return jsonify({'success': True, 'image_url': user.image})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Profile image error: {str(e)}", exc_info=True)
        return _internal_error('Failed to update profile image')


# =============================================================================
# CONNECTION ENDPOINTS
# =============================================================================

@app.route('/api/users/<int:user_id>/connection')
@require_auth
def get_connection(user_id):
    """Connection between the session user and user_id, in either direction"""
    try:
        connection = ConnectionManager.get_connection(db, get_user_id(), user_id)
        return jsonify({'success': True, 'connection': connection.to_dict() if connection else None})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Get connection error: {str(e)}", exc_info=True)
        return _internal_error('Failed to fetch connection')


@app.route('/api/users/<int:user_id>/connection', methods=['POST'])
@require_auth
@limiter.limit("30 per minute", key_func=get_user_rate_limit_key)
def request_connection(user_id):
    try:
        connection = ConnectionManager.request_connection(db, get_user_id(), user_id)
        return jsonify({'success': True, 'connection': connection.to_dict()}), 201

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Connection request error: {str(e)}", exc_info=True)
        return _internal_error('Failed to create connection')


@app.route('/api/users/<int:user_id>/connection', methods=['PATCH'])
@require_auth
@limiter.limit("60 per minute", key_func=get_user_rate_limit_key)
def respond_to_connection(user_id):
    """Body: {action: accept|reject} for the request user_id sent to the session user"""
    try:
        data = get_json_body(request)
        connection = ConnectionManager.respond_to_connection(db, get_user_id(), user_id, data.get('action'))
        return jsonify({'success': True, 'connection': connection.to_dict()})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Connection response error: {str(e)}", exc_info=True)
        return _internal_error('Failed to update connection')


@app.route('/api/users/<int:user_id>/connection', methods=['DELETE'])
@require_auth
def delete_connection(user_id):
    try:
        raw_id = request.args.get('connection_id')
        connection_id = parse_id(raw_id, 'connection_id') if raw_id else None
        ConnectionManager.delete_connection(db, get_user_id(), connection_id)
        return jsonify({'success': True})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Delete connection error: {str(e)}", exc_info=True)
        return _internal_error('Failed to delete connection')


@app.route('/api/users/<int:user_id>/connections')
@require_auth
def list_connections(user_id):
    try:
        result = ConnectionManager.list_connections(db, user_id, request.args.get('status') or None)
        return jsonify({'success': True, **result})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"List connections error: {str(e)}", exc_info=True)
        return _internal_error('Failed to fetch connections')


# =============================================================================
# MESSAGE ENDPOINTS
# =============================================================================

@app.route('/api/messages')
@require_auth
@limiter.limit("3000 per minute")
def list_messages():
    """Conversation list, or one conversation's messages when conversation_id is given"""
    try:
        conversation_id = request.args.get('conversation_id')
        if conversation_id:
            return _conversation_messages(parse_id(conversation_id, 'conversation_id'))

        conversations = ConversationManager.list_conversations(db, get_user_id())
        return jsonify({'success': True, 'conversations': conversations})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"List messages error: {str(e)}", exc_info=True)
        return _internal_error('Failed to fetch messages')


def _conversation_messages(conversation_id):
    messages = ConversationManager.get_messages(
        db, get_user_id(), conversation_id, limit=app.config['MESSAGES_PER_CONVERSATION']
    )
    return jsonify({'success': True, 'messages': [message.to_dict() for message in messages]})


@app.route('/api/messages/<int:conversation_id>')
@require_auth
def get_conversation(conversation_id):
    try:
        return _conversation_messages(conversation_id)

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Get conversation error: {str(e)}", exc_info=True)
        return _internal_error('Failed to fetch messages')


@app.route('/api/messages', methods=['POST'])
@require_auth
@limiter.limit("60 per minute", key_func=get_user_rate_limit_key)
def send_message():
    """Body: {content, receiver_id}"""
    try:
        data = get_json_body(request)
        require_fields(data, ['receiver_id'], message='Receiver ID is required')
        receiver_id = parse_id(data['receiver_id'], 'receiver_id')
        content = clean_text(data, 'content', InputValidator.MAX_TEXT_LENGTH)

        message = ConversationManager.send_message(db, get_user_id(), receiver_id, content)
        return jsonify({'success': True, 'message': message.to_dict()}), 201

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Send message error: {str(e)}", exc_info=True)
        return _internal_error('Failed to send message')


@app.route('/api/messages/mark-read', methods=['POST'])
@require_auth
def mark_messages_read():
    """Body: {message_ids: [...]}"""
    try:
        data = get_json_body(request)
        count = ConversationManager.mark_messages_read(db, get_user_id(), data.get('message_ids'))
        return jsonify({'success': True, 'marked': count})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Mark messages read error: {str(e)}", exc_info=True)
        return _internal_error('Failed to mark messages as read')


@app.route('/api/messages/unread-count')
@require_auth
@limiter.limit("3000 per minute")  # Polled by the header badge
def message_unread_count():
    try:
        return jsonify({'success': True, 'count': ConversationManager.get_unread_count(db, get_user_id())})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Message unread count error: {str(e)}", exc_info=True)
        return _internal_error('Failed to fetch unread count')


# =============================================================================
# NOTIFICATION ENDPOINTS
# =============================================================================

@app.route('/api/notifications')
@require_auth
@limiter.limit("3000 per minute")  # Reasonable polling frequency
def get_notifications():
    """Get notifications for current user"""
    try:
        user_id = get_user_id()
        unread_only = request.args.get('unread_only', 'false').lower() == 'true'
        limit = InputValidator.validate_limit(
            request.args.get('limit'),
            app.config['NOTIFICATIONS_DEFAULT_LIMIT'],
            app.config['NOTIFICATIONS_MAX_LIMIT']
        )

        notifications = NotificationManager.get_user_notifications(db, user_id, unread_only=unread_only, limit=limit)
        unread_count = NotificationManager.get_unread_count(db, user_id)

        return jsonify({
            'success': True,
            'notifications': [n.to_dict() for n in notifications],
            'unread_count': unread_count
        })

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error fetching notifications: {str(e)}", exc_info=True)
        return _internal_error('Failed to fetch notifications')


@app.route('/api/notifications/unread-count')
@require_auth
@limiter.limit("3000 per minute")
def get_notification_unread_count():
    """Get unread notification count for current user"""
    try:
        return jsonify({'success': True, 'unread_count': NotificationManager.get_unread_count(db, get_user_id())})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error fetching unread count: {str(e)}", exc_info=True)
        return _internal_error('Failed to fetch unread count')


@app.route('/api/notifications/<int:notification_id>', methods=['PATCH'])
@require_auth
def mark_notification_read(notification_id):
    """Mark a notification as read"""
    try:
        notification = NotificationManager.mark_as_read(db, notification_id, get_user_id())
        return jsonify({'success': True, 'notification': notification.to_dict()})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error marking notification as read: {str(e)}", exc_info=True)
        return _internal_error('Failed to mark notification as read')


@app.route('/api/notifications/mark-all-read', methods=['POST'])
@require_auth
def mark_all_notifications_read():
    """Mark all notifications as read for current user"""
    try:
        count = NotificationManager.mark_all_as_read(db, get_user_id())
        return jsonify({'success': True, 'marked': count})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error marking all notifications as read: {str(e)}", exc_info=True)
        return _internal_error('Failed to mark notifications as read')


@app.route('/api/notifications/<int:notification_id>', methods=['DELETE'])
@require_auth
def delete_notification(notification_id):
    try:
        NotificationManager.delete_notification(db, notification_id, get_user_id())
        return jsonify({'success': True})

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error deleting notification: {str(e)}", exc_info=True)
        return _internal_error('Failed to delete notification')


# =============================================================================
# REALTIME CHANNEL AUTHORIZATION
# =============================================================================

@app.route('/api/pusher/auth', methods=['POST'])
@csrf.exempt  # pusher-js posts a plain form; session plus exact channel match guard it
@require_auth
@limiter.limit("120 per minute", key_func=get_user_rate_limit_key)
def pusher_auth():
    """Sign a private-user-{id} subscription; pusher-js posts form fields"""
    try:
        source = request.form if request.form else (request.get_json(silent=True) or {})
        auth = relay.authorize_channel(get_user_id(), source.get('channel_name'), source.get('socket_id'))
        return jsonify(auth)

    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error authenticating channel: {str(e)}", exc_info=True)
        return _internal_error('Failed to authenticate channel')
