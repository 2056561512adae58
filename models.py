import datetime
import enum
from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy import event
from app import db


class UserRole(enum.Enum):
    ADMIN = "ADMIN"
    FOUNDER = "FOUNDER"
    VENDOR = "VENDOR"
    USER = "USER"


class PostCategory(enum.Enum):
    THOUGHT_LEADERSHIP = "THOUGHT_LEADERSHIP"
    NEWS = "NEWS"
    EVENTS = "EVENTS"
    BLOG_POSTS = "BLOG_POSTS"
    BOOKS = "BOOKS"
    COURSES = "COURSES"
    PODCASTS = "PODCASTS"
    PRESENTATIONS = "PRESENTATIONS"
    PRESS_RELEASES = "PRESS_RELEASES"
    TEMPLATES = "TEMPLATES"
    VIDEOS = "VIDEOS"
    WEBINARS = "WEBINARS"
    CASE_STUDIES = "CASE_STUDIES"
    WHITEPAPERS = "WHITEPAPERS"
    JOBS = "JOBS"
    RECENT_JOBS = "RECENT_JOBS"


class ConnectionStatus(enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class NotificationType(enum.Enum):
    CONNECTION_REQUEST = "CONNECTION_REQUEST"
    CONNECTION_ACCEPTED = "CONNECTION_ACCEPTED"
    CONNECTION_REJECTED = "CONNECTION_REJECTED"
    NEW_MESSAGE = "NEW_MESSAGE"


def make_pair_key(user_a_id, user_b_id):
    """Order-independent key for an unordered pair of user ids"""
    low, high = sorted((int(user_a_id), int(user_b_id)))
    return f"{low}:{high}"


def _isoformat(value):
    return value.isoformat() if value else None


post_tags = db.Table(
    'post_tags',
    db.Column('post_id', db.Integer, db.ForeignKey('post.id', ondelete='CASCADE'), primary_key=True),
    db.Column('tag_id', db.Integer, db.ForeignKey('tag.id', ondelete='CASCADE'), primary_key=True),
)

conversation_participants = db.Table(
    'conversation_participants',
    db.Column('conversation_id', db.Integer, db.ForeignKey('conversation.id', ondelete='CASCADE'), primary_key=True),
    db.Column('user_id', db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), primary_key=True),
)


class User(db.Model):
    """Registered community member"""
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), default=UserRole.USER.value, nullable=False)
    image = db.Column(db.String(500), nullable=True)
    business_name = db.Column(db.String(200), nullable=True)
    business_type = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    profile = db.relationship('Profile', back_populates='user', uselist=False, cascade='all, delete-orphan')

    __table_args__ = (
        db.Index('idx_user_role', 'role'),
    )

    def set_password(self, password):
        """Set user password hash"""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Check password against stored hash"""
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def is_admin(self):
        """Check if user is an admin"""
        return self.role == UserRole.ADMIN.value

    def to_public_dict(self):
        """Author/participant summary embedded in other payloads"""
        return {
            'id': self.id,
            'name': self.name,
            'image': self.image,
            'role': self.role,
            'business_name': self.business_name,
        }

    def to_dict(self):
        """Full profile view; never includes the password hash"""
        data = self.to_public_dict()
        data.update({
            'email': self.email,
            'business_type': self.business_type,
            'created_at': _isoformat(self.created_at),
        })
        profile = self.profile
        data.update({
            'bio': profile.bio if profile else None,
            'location': profile.location if profile else None,
            'website': profile.website if profile else None,
            'occupation': profile.occupation if profile else None,
            'interests': (profile.interests or []) if profile else [],
            'social_links': profile.social_links if profile else None,
        })
        return data

    def __repr__(self):
        return f"<User {self.email}>"


class Profile(db.Model):
    """Extended profile fields, one row per user"""
    __tablename__ = 'profile'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), unique=True, nullable=False)
    bio = db.Column(db.Text, nullable=True)
    location = db.Column(db.String(200), nullable=True)
    website = db.Column(db.String(500), nullable=True)
    occupation = db.Column(db.String(200), nullable=True)
    interests = db.Column(db.JSON, default=list)
    social_links = db.Column(db.JSON, nullable=True)  # facebook, twitter, linkedin, instagram

    user = db.relationship('User', back_populates='profile')

    def __repr__(self):
        return f"<Profile user:{self.user_id}>"


class Tag(db.Model):
    __tablename__ = 'tag'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)

    def __repr__(self):
        return f"<Tag {self.name}>"


class Post(db.Model):
    """Feed item in one of the content categories"""
    __tablename__ = 'post'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False)
    summary = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(30), nullable=False)
    featured_image = db.Column(db.String(500), nullable=True)
    video_url = db.Column(db.String(500), nullable=True)
    # `metadata` is reserved on declarative classes
    post_metadata = db.Column('metadata', db.JSON, nullable=True)
    published = db.Column(db.Boolean, default=True, nullable=False)
    upvote_count = db.Column(db.Integer, default=0, nullable=False)
    author_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    author = db.relationship('User', backref=db.backref('posts', lazy='dynamic', passive_deletes=True))
    tags = db.relationship('Tag', secondary=post_tags, backref=db.backref('posts', lazy='dynamic'))
    comments = db.relationship('Comment', back_populates='post', lazy='dynamic', cascade='all')

    __table_args__ = (
        db.Index('idx_post_created', 'created_at', 'id'),
        db.Index('idx_post_author_created', 'author_id', 'created_at'),
        db.Index('idx_post_category_created', 'category', 'created_at'),
        db.CheckConstraint('upvote_count >= 0', name='ck_post_upvote_count_non_negative'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'content': self.content,
            'summary': self.summary,
            'category': self.category,
            'created_at': _isoformat(self.created_at),
            'featured_image': self.featured_image,
            'video_url': self.video_url,
            'metadata': self.post_metadata,
            'upvote_count': self.upvote_count,
            'author_id': self.author_id,
            'author': self.author.to_public_dict() if self.author else None,
            'tags': [{'name': tag.name} for tag in self.tags],
            'comment_count': self.comments.count(),
        }

    def __repr__(self):
        return f"<Post {self.id} ({self.category})>"


class Comment(db.Model):
    __tablename__ = 'comment'
    id = db.Column(db.Integer, primary_key=True)
    content = db.Column(db.Text, nullable=False)
    post_id = db.Column(db.Integer, db.ForeignKey('post.id', ondelete='CASCADE'), nullable=False)
    author_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, nullable=False)

    post = db.relationship('Post', back_populates='comments')
    author = db.relationship('User', backref=db.backref('comments', lazy='dynamic', passive_deletes=True))

    __table_args__ = (
        db.Index('idx_comment_post_created', 'post_id', 'created_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'content': self.content,
            'post_id': self.post_id,
            'author_id': self.author_id,
            'created_at': _isoformat(self.created_at),
            'author': {
                'id': self.author.id,
                'name': self.author.name,
                'image': self.author.image,
            } if self.author else None,
        }

    def __repr__(self):
        return f"<Comment {self.id} on post {self.post_id}>"


class PostUpvote(db.Model):
    """One row per (user, post) upvote; Post.upvote_count mirrors the row count"""
    __tablename__ = 'post_upvote'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    post_id = db.Column(db.Integer, db.ForeignKey('post.id', ondelete='CASCADE'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'post_id', name='uq_post_upvote_user_post'),
        db.Index('idx_post_upvote_post', 'post_id'),
    )

    def __repr__(self):
        return f"<PostUpvote user:{self.user_id} post:{self.post_id}>"


class Connection(db.Model):
    """Directed connection request between two users"""
    __tablename__ = 'connection'
    id = db.Column(db.Integer, primary_key=True)
    sender_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    receiver_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    status = db.Column(db.String(20), default=ConnectionStatus.PENDING.value, nullable=False)
    # Unordered pair, so A->B and B->A collide on the unique constraint
    pair_key = db.Column(db.String(64), nullable=False, unique=True)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow, nullable=False)

    sender = db.relationship('User', foreign_keys=[sender_id], backref=db.backref('sent_connections', lazy='dynamic', passive_deletes=True))
    receiver = db.relationship('User', foreign_keys=[receiver_id], backref=db.backref('received_connections', lazy='dynamic', passive_deletes=True))

    __table_args__ = (
        db.Index('idx_connection_sender_status', 'sender_id', 'status'),
        db.Index('idx_connection_receiver_status', 'receiver_id', 'status'),
        db.Index('idx_connection_updated', 'updated_at'),
        db.CheckConstraint('sender_id <> receiver_id', name='ck_connection_not_self'),
    )

    def involves(self, user_id):
        return user_id in (self.sender_id, self.receiver_id)

    def to_dict(self):
        return {
            'id': self.id,
            'sender_id': self.sender_id,
            'receiver_id': self.receiver_id,
            'status': self.status,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
            'sender': self.sender.to_public_dict() if self.sender else None,
            'receiver': self.receiver.to_public_dict() if self.receiver else None,
        }

    def __repr__(self):
        return f"<Connection {self.sender_id} -> {self.receiver_id} ({self.status})>"


@event.listens_for(Connection, 'before_insert')
def assign_connection_pair_key(mapper, connection, target):
    """Derive the unordered pair key from sender and receiver before saving"""
    target.pair_key = make_pair_key(target.sender_id, target.receiver_id)


class Conversation(db.Model):
    """Direct-message thread between exactly two users"""
    __tablename__ = 'conversation'
    id = db.Column(db.Integer, primary_key=True)
    pair_key = db.Column(db.String(64), nullable=False, unique=True)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, nullable=False)

    participants = db.relationship('User', secondary=conversation_participants,
                                   backref=db.backref('conversations', lazy='dynamic'))
    messages = db.relationship('Message', back_populates='conversation', lazy='dynamic', cascade='all')

    __table_args__ = (
        db.Index('idx_conversation_updated', 'updated_at'),
    )

    def has_participant(self, user_id):
        return any(user.id == user_id for user in self.participants)

    def to_dict(self, viewer_id):
        """Conversation list entry: the other participant and the latest message"""
        last_message = self.messages.order_by(Message.created_at.desc(), Message.id.desc()).first()
        return {
            'id': self.id,
            'updated_at': _isoformat(self.updated_at),
            'participants': [
                {'id': user.id, 'name': user.name, 'image': user.image}
                for user in self.participants if user.id != viewer_id
            ],
            'last_message': {
                'content': last_message.content,
                'created_at': _isoformat(last_message.created_at),
                'read': last_message.read,
                'sender_id': last_message.sender_id,
            } if last_message else None,
        }

    def __repr__(self):
        return f"<Conversation {self.id} ({self.pair_key})>"


class Message(db.Model):
    __tablename__ = 'message'
    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey('conversation.id', ondelete='CASCADE'), nullable=False)
    sender_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    receiver_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    content = db.Column(db.Text, nullable=False)
    read = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, nullable=False)

    conversation = db.relationship('Conversation', back_populates='messages')
    sender = db.relationship('User', foreign_keys=[sender_id])
    receiver = db.relationship('User', foreign_keys=[receiver_id])

    __table_args__ = (
        db.Index('idx_message_conversation_created', 'conversation_id', 'created_at'),
        db.Index('idx_message_receiver_read', 'receiver_id', 'read'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'content': self.content,
            'created_at': _isoformat(self.created_at),
            'read': self.read,
            'sender_id': self.sender_id,
            'receiver_id': self.receiver_id,
            'conversation_id': self.conversation_id,
            'sender': {
                'id': self.sender.id,
                'name': self.sender.name,
                'image': self.sender.image,
            } if self.sender else None,
        }

    def __repr__(self):
        return f"<Message {self.id} in conversation {self.conversation_id}>"


class Notification(db.Model):
    """Model for in-app user notifications"""
    __tablename__ = 'notification'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    notification_type = db.Column(db.String(40), nullable=False)
    message = db.Column(db.Text, nullable=False)
    link = db.Column(db.String(500), nullable=True)  # Optional link to related page/entity
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, nullable=False)
    read_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship('User', backref=db.backref('notifications', lazy='dynamic', passive_deletes=True))

    __table_args__ = (
        db.Index('idx_notification_user_read', 'user_id', 'is_read'),
        db.Index('idx_notification_user_created', 'user_id', 'created_at'),
    )

    def __repr__(self):
        return f"<Notification {self.id}: {self.notification_type} for user {self.user_id}>"

    def mark_as_read(self):
        """Mark notification as read"""
        if not self.is_read:
            self.is_read = True
            self.read_at = datetime.datetime.utcnow()

    def to_dict(self):
        """Convert notification to dictionary for JSON serialization"""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'type': self.notification_type,
            'message': self.message,
            'link': self.link,
            'is_read': self.is_read,
            'created_at': _isoformat(self.created_at),
            'read_at': _isoformat(self.read_at),
        }
