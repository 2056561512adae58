"""
Post, comment and upvote utilities for TourismIQ

The feed is cursor-paginated on (created_at, id) descending; the cursor is
the id of the last post of the previous page.
"""

import logging
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError

from error_handlers import ValidationError, NotFoundError, AuthorizationError
from validation_utils import InputValidator, clean_text, parse_id

logger = logging.getLogger(__name__)

UPVOTE_ACTIONS = ('upvote', 'remove')


class PostManager:
    """Manager class for posts, comments and upvotes"""

    @staticmethod
    def get_post(db, post_id: int):
        from models import Post

        post = db.session.get(Post, post_id)
        if post is None:
            raise NotFoundError('Post not found')
        return post

    @staticmethod
    def get_feed(db, cursor=None, limit: int = 5, category=None, author_id=None):
        """
        One page of published posts, newest first

        Args:
            db: Database session
            cursor: id of the last post already seen, or None for the first page
            limit: page size
            category: optional PostCategory value filter
            author_id: optional author filter

        Returns:
            {'items': [post dicts], 'next_cursor': id or None}
        """
        from models import Post, PostCategory

        query = Post.query.filter(Post.published.is_(True))

        if category:
            allowed = [c.value for c in PostCategory]
            is_valid, error = InputValidator.validate_choice(category, allowed, 'Category')
            if not is_valid:
                raise ValidationError(error, details={'field': 'category'})
            query = query.filter(Post.category == category)

        if author_id is not None:
            query = query.filter(Post.author_id == author_id)

        if cursor:
            cursor_post = db.session.get(Post, parse_id(cursor, 'cursor'))
            if cursor_post is None:
                raise ValidationError('Invalid cursor', details={'field': 'cursor'})
            query = query.filter(or_(
                Post.created_at < cursor_post.created_at,
                and_(Post.created_at == cursor_post.created_at, Post.id < cursor_post.id)
            ))

        # Take one extra row to know whether another page exists
        posts = query.order_by(Post.created_at.desc(), Post.id.desc()).limit(limit + 1).all()

        next_cursor = None
        if len(posts) > limit:
            posts = posts[:limit]
            next_cursor = posts[-1].id

        return {'items': [post.to_dict() for post in posts], 'next_cursor': next_cursor}

    @staticmethod
    def create_post(db, author_id: int, data: dict):
        """Validate a JSON body and create a post with its tags"""
        from models import Post, PostCategory, Tag

        title = clean_text(data, 'title', InputValidator.MAX_TITLE_LENGTH, required=True)
        content = clean_text(data, 'content', InputValidator.MAX_CONTENT_LENGTH, required=True)
        summary = clean_text(data, 'summary', InputValidator.MAX_TEXT_LENGTH)

        category = data.get('category')
        is_valid, error = InputValidator.validate_choice(category, [c.value for c in PostCategory], 'Category')
        if not is_valid:
            raise ValidationError(error, details={'field': 'category'})

        urls = {}
        for field in ('featured_image', 'video_url'):
            value = data.get(field)
            if value:
                is_valid, error = InputValidator.validate_url(value)
                if not is_valid:
                    raise ValidationError(f"Invalid {field}: {error}", details={'field': field})
                urls[field] = value.strip()

        metadata = data.get('metadata')
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError('metadata must be an object', details={'field': 'metadata'})

        tag_names = data.get('tags') or []
        if not isinstance(tag_names, list) or not all(isinstance(name, str) for name in tag_names):
            raise ValidationError('tags must be a list of strings', details={'field': 'tags'})

        post = Post(
            title=title,
            content=content,
            summary=summary,
            category=category,
            featured_image=urls.get('featured_image'),
            video_url=urls.get('video_url'),
            post_metadata=metadata,
            author_id=author_id
        )

        # Pending before the tag lookups below autoflush
        db.session.add(post)

        for name in {InputValidator.sanitize_html(name, 100).lower() for name in tag_names}:
            if not name:
                continue
            tag = Tag.query.filter_by(name=name).first()
            if tag is None:
                tag = Tag(name=name)
                db.session.add(tag)
            post.tags.append(tag)

        db.session.commit()
        logger.info(f"Post {post.id} created by user {author_id} in {category}")
        return post

    @staticmethod
    def delete_post(db, user_id: int, user_role, post_id: int):
        """Delete a post with its comments and upvotes; author or admin only"""
        from models import Comment, PostUpvote, UserRole

        post = PostManager.get_post(db, post_id)
        if post.author_id != user_id and user_role != UserRole.ADMIN.value:
            logger.warning(f"User {user_id} denied deleting post {post_id}")
            raise AuthorizationError('You cannot delete this post')

        Comment.query.filter_by(post_id=post_id).delete(synchronize_session=False)
        PostUpvote.query.filter_by(post_id=post_id).delete(synchronize_session=False)
        db.session.delete(post)
        db.session.commit()
        logger.info(f"Post {post_id} deleted by user {user_id}")
        return True

    @staticmethod
    def list_comments(db, post_id: int):
        from models import Comment

        PostManager.get_post(db, post_id)
        comments = Comment.query.filter_by(post_id=post_id).order_by(
            Comment.created_at.desc(), Comment.id.desc()
        ).all()
        return [comment.to_dict() for comment in comments]

    @staticmethod
    def add_comment(db, user_id: int, post_id: int, content):
        from models import Comment

        if not isinstance(content, str) or not content.strip():
            raise ValidationError('Comment content is required', details={'field': 'content'})

        PostManager.get_post(db, post_id)
        comment = Comment(
            content=InputValidator.sanitize_html(content, InputValidator.MAX_TEXT_LENGTH),
            post_id=post_id,
            author_id=user_id
        )
        db.session.add(comment)
        db.session.commit()
        logger.info(f"Comment {comment.id} added to post {post_id} by user {user_id}")
        return comment

    @staticmethod
    def set_upvote(db, user_id: int, post_id: int, upvoted: bool):
        """
        Record or remove the user's upvote on a post

        Idempotent per (user, post): repeating an upvote or removing a missing
        upvote leaves the count unchanged.

        Returns:
            {'post_id', 'upvoted', 'upvote_count'}
        """
        from models import Post, PostUpvote

        PostManager.get_post(db, post_id)
        existing = PostUpvote.query.filter_by(user_id=user_id, post_id=post_id).first()

        if upvoted and existing is None:
            try:
                db.session.add(PostUpvote(user_id=user_id, post_id=post_id))
                db.session.flush()
                Post.query.filter_by(id=post_id).update(
                    {'upvote_count': Post.upvote_count + 1}, synchronize_session=False
                )
                db.session.commit()
            except IntegrityError:
                # Concurrent upvote from the same user already counted
                db.session.rollback()
        elif not upvoted and existing is not None:
            db.session.delete(existing)
            Post.query.filter(Post.id == post_id, Post.upvote_count > 0).update(
                {'upvote_count': Post.upvote_count - 1}, synchronize_session=False
            )
            db.session.commit()

        post = db.session.get(Post, post_id)
        db.session.refresh(post)
        return {'post_id': post.id, 'upvoted': upvoted, 'upvote_count': post.upvote_count}
