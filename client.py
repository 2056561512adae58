"""
Python client for the TourismIQ API.

Keeps a local cache of the lists it has fetched and reconciles it with
server responses and live relay events:

* post/comment creation is optimistic: a `temp-<millis>` placeholder is
  shown at the head of the cached lists and replaced by the server row, or
  the lists are dropped and refetched when the request fails;
* live events are merged by id, so a message that arrives both as the
  response to send_message() and as a `new-message` event appears once;
* read state of notifications and messages is mirrored locally;
* the set of upvoted posts is persisted to a small JSON file and decides
  whether the next toggle upvotes or removes.
"""
import logging
import os
import time
from typing import Any, Dict, List, Optional

import requests
from requests import Session
import ujson as json

logger = logging.getLogger(__name__)

DEFAULT_UPVOTE_STORE = os.path.join(os.path.expanduser('~'), '.tourismiq', 'upvoted_posts.json')

FEED = ('feed',)
CONVERSATIONS = ('conversations',)
NOTIFICATIONS = ('notifications',)


def user_posts_key(user_id):
    return ('user_posts', user_id)


def comments_key(post_id):
    return ('comments', post_id)


def messages_key(conversation_id):
    return ('messages', conversation_id)


class APIClientError(Exception):
    """Non-2xx response from the API"""

    def __init__(self, status_code: int, message: str, payload: Optional[Dict[str, Any]] = None):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.payload = payload or {}


class UpvoteTracker:
    """Set of upvoted post ids persisted as a JSON list"""

    def __init__(self, path: Optional[str] = None):
        self.path = path or DEFAULT_UPVOTE_STORE
        self._post_ids = self._load()

    def _load(self) -> set:
        if not os.path.exists(self.path):
            return set()
        try:
            with open(self.path, 'r') as f:
                return {int(post_id) for post_id in json.load(f)}
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Ignoring unreadable upvote store {self.path}: {e}")
            return set()

    def _save(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(sorted(self._post_ids), f)

    def is_upvoted(self, post_id: int) -> bool:
        return int(post_id) in self._post_ids

    def set(self, post_id: int, upvoted: bool) -> None:
        if upvoted:
            self._post_ids.add(int(post_id))
        else:
            self._post_ids.discard(int(post_id))
        self._save()


class CommunityClient:
    """HTTP client for the community API with a reconciling local cache.

    `session` may be any object with a requests-compatible `request()`;
    a fresh requests.Session is used by default.
    """

    def __init__(self, base_url: str, session: Optional[Session] = None, timeout: float = 5.0,
                 upvote_store_path: Optional[str] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.upvotes = UpvoteTracker(upvote_store_path)
        self.user: Optional[Dict[str, Any]] = None
        self.cache: Dict[tuple, List[Dict[str, Any]]] = {}
        self.cursors: Dict[tuple, Optional[int]] = {}
        self.unread_count = 0
        self._known_notification_ids: set = set()
        self._csrf_token: Optional[str] = None

    # --- helpers ---
    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 json_payload: Optional[Dict[str, Any]] = None, form: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {}
        if method != 'GET' and self._csrf_token:
            headers['X-CSRFToken'] = self._csrf_token

        resp = self.session.request(method, url, params=params, json=json_payload, data=form,
                                    headers=headers, timeout=self.timeout)
        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code >= 400:
            message = body.get('message') if isinstance(body, dict) else resp.text
            raise APIClientError(resp.status_code, message or 'Request failed', body if isinstance(body, dict) else None)
        return body

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request('GET', path, params=params)

    def _post(self, path: str, json_payload: Optional[Dict[str, Any]] = None) -> Any:
        return self._request('POST', path, json_payload=json_payload)

    @property
    def user_id(self) -> Optional[int]:
        return self.user['id'] if self.user else None

    def invalidate(self, *keys: tuple) -> None:
        """Drop cached lists so the next read refetches them"""
        for key in keys:
            self.cache.pop(key, None)
            self.cursors.pop(key, None)

    @staticmethod
    def _temp_id() -> str:
        return f"temp-{int(time.time() * 1000)}"

    def _merge(self, key: tuple, item: Dict[str, Any]) -> bool:
        """Prepend item to a cached list unless an entry with its id is there"""
        items = self.cache.get(key)
        if items is None:
            return False
        if any(existing.get('id') == item.get('id') for existing in items):
            return False
        items.insert(0, item)
        return True

    def _replace(self, key: tuple, temp_id: str, item: Dict[str, Any]) -> None:
        items = self.cache.get(key)
        if items is None:
            return
        # The server row may already be present via a live event
        items[:] = [existing for existing in items if existing.get('id') != item.get('id')]
        for index, existing in enumerate(items):
            if existing.get('id') == temp_id:
                items[index] = item
                return
        items.insert(0, item)

    def _refetch(self, key: tuple) -> None:
        loaders = {
            'feed': lambda: self.get_feed(refresh=True),
            'user_posts': lambda: self.get_user_posts(key[1], refresh=True),
            'comments': lambda: self.get_comments(key[1], refresh=True),
            'messages': lambda: self.get_messages(key[1], refresh=True),
            'conversations': lambda: self.get_conversations(refresh=True),
            'notifications': lambda: self.get_notifications(refresh=True),
        }
        try:
            loaders[key[0]]()
        except (APIClientError, requests.RequestException) as e:
            logger.warning(f"Refetch of {key} failed: {e}")

    def _optimistic_create(self, keys: List[tuple], placeholder: Dict[str, Any], send, result_field: str):
        cached_keys = [key for key in keys if key in self.cache]
        for key in cached_keys:
            self.cache[key].insert(0, placeholder)

        try:
            response = send()
        except (APIClientError, requests.RequestException):
            logger.warning(f"Optimistic create failed, refetching {cached_keys}")
            self.invalidate(*cached_keys)
            for key in cached_keys:
                self._refetch(key)
            raise

        created = response[result_field]
        for key in cached_keys:
            self._replace(key, placeholder['id'], created)
        return created

    # --- auth ---
    def fetch_csrf_token(self) -> str:
        self._csrf_token = self._get('/api/auth/csrf')['csrf_token']
        return self._csrf_token

    def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        return self._post('/api/auth/register', {'name': name, 'email': email, 'password': password})['user']

    def login(self, email: str, password: str) -> Dict[str, Any]:
        self.user = self._post('/api/auth/login', {'email': email, 'password': password})['user']
        return self.user

    def logout(self) -> None:
        self._post('/api/auth/logout')
        self.user = None
        self.cache.clear()
        self.cursors.clear()
        self.unread_count = 0
        self._known_notification_ids.clear()

    # --- posts ---
    def _load_page(self, key: tuple, path: str, refresh: bool, more: bool) -> List[Dict[str, Any]]:
        if key in self.cache and not refresh and not more:
            return self.cache[key]
        # Past the last page: nothing further to load
        if more and not refresh and key in self.cache and self.cursors.get(key) is None:
            return self.cache[key]

        params = {}
        if more and self.cursors.get(key):
            params['cursor'] = self.cursors[key]
        page = self._get(path, params=params)

        if more and key in self.cache:
            for item in page['items']:
                if not any(existing.get('id') == item['id'] for existing in self.cache[key]):
                    self.cache[key].append(item)
        else:
            self.cache[key] = list(page['items'])
        self.cursors[key] = page.get('next_cursor')
        return self.cache[key]

    def get_feed(self, refresh: bool = False, more: bool = False) -> List[Dict[str, Any]]:
        return self._load_page(FEED, '/api/posts', refresh, more)

    def get_user_posts(self, user_id: int, refresh: bool = False, more: bool = False) -> List[Dict[str, Any]]:
        return self._load_page(user_posts_key(user_id), f'/api/users/{user_id}/posts', refresh, more)

    def create_post(self, data: Dict[str, Any]) -> Dict[str, Any]:
        placeholder = dict(data, id=self._temp_id(), upvote_count=0, comment_count=0, author=self.user,
                           author_id=self.user_id, pending=True)
        return self._optimistic_create(
            [FEED, user_posts_key(self.user_id)],
            placeholder,
            lambda: self._post('/api/posts', data),
            'post'
        )

    def delete_post(self, post_id: int) -> None:
        self._request('DELETE', f'/api/posts/{post_id}')
        for key, items in self.cache.items():
            if key[0] in ('feed', 'user_posts'):
                items[:] = [item for item in items if item.get('id') != post_id]
        self.invalidate(comments_key(post_id))

    def get_comments(self, post_id: int, refresh: bool = False) -> List[Dict[str, Any]]:
        key = comments_key(post_id)
        if key not in self.cache or refresh:
            self.cache[key] = list(self._get(f'/api/posts/{post_id}/comments')['comments'])
        return self.cache[key]

    def add_comment(self, post_id: int, content: str) -> Dict[str, Any]:
        placeholder = {'id': self._temp_id(), 'content': content, 'post_id': post_id,
                       'author_id': self.user_id, 'author': self.user, 'pending': True}
        comment = self._optimistic_create(
            [comments_key(post_id)],
            placeholder,
            lambda: self._post(f'/api/posts/{post_id}/comments', {'content': content}),
            'comment'
        )
        self._patch_posts(lambda post: post.get('id') == post_id,
                          lambda post: post.update(comment_count=post.get('comment_count', 0) + 1))
        return comment

    def _patch_posts(self, predicate, patch) -> None:
        for key, items in self.cache.items():
            if key[0] not in ('feed', 'user_posts'):
                continue
            for post in items:
                if predicate(post):
                    patch(post)

    def toggle_upvote(self, post_id: int) -> Dict[str, Any]:
        """Upvote, or remove the upvote when this client already upvoted the post"""
        action = 'remove' if self.upvotes.is_upvoted(post_id) else 'upvote'
        result = self._post('/api/posts/upvote', {'post_id': post_id, 'action': action})
        self.upvotes.set(post_id, action == 'upvote')
        self._patch_posts(lambda post: post.get('id') == post_id,
                          lambda post: post.update(upvote_count=result['upvote_count']))
        return result

    # --- profile & connections ---
    def update_profile_image(self, image_url: str) -> str:
        image = self._request('PATCH', f'/api/users/{self.user_id}/profile/image',
                              json_payload={'image': image_url})['image_url']
        self.user = dict(self.user, image=image)
        self._patch_posts(lambda post: (post.get('author') or {}).get('id') == self.user_id,
                          lambda post: post['author'].update(image=image))
        return image

    def get_connection(self, user_id: int) -> Optional[Dict[str, Any]]:
        return self._get(f'/api/users/{user_id}/connection')['connection']

    def request_connection(self, user_id: int) -> Dict[str, Any]:
        return self._post(f'/api/users/{user_id}/connection')['connection']

    def respond_to_connection(self, user_id: int, action: str) -> Dict[str, Any]:
        return self._request('PATCH', f'/api/users/{user_id}/connection',
                             json_payload={'action': action})['connection']

    def delete_connection(self, user_id: int, connection_id: int) -> None:
        self._request('DELETE', f'/api/users/{user_id}/connection', params={'connection_id': connection_id})

    def list_connections(self, user_id: int, status: Optional[str] = None) -> Dict[str, Any]:
        data = self._get(f'/api/users/{user_id}/connections', params={'status': status} if status else None)
        data.pop('success', None)
        return data

    # --- messages ---
    def get_conversations(self, refresh: bool = False) -> List[Dict[str, Any]]:
        if CONVERSATIONS not in self.cache or refresh:
            self.cache[CONVERSATIONS] = list(self._get('/api/messages')['conversations'])
        return self.cache[CONVERSATIONS]

    def get_messages(self, conversation_id: int, refresh: bool = False) -> List[Dict[str, Any]]:
        """Open a conversation; the server marks received messages read"""
        key = messages_key(conversation_id)
        if key not in self.cache or refresh:
            self.cache[key] = list(self._get(f'/api/messages/{conversation_id}')['messages'])
        for message in self.cache[key]:
            if message.get('receiver_id') == self.user_id:
                message['read'] = True
        return self.cache[key]

    def send_message(self, receiver_id: int, content: str) -> Dict[str, Any]:
        message = self._post('/api/messages', {'content': content, 'receiver_id': receiver_id})['message']
        self._merge(messages_key(message['conversation_id']), message)
        self.invalidate(CONVERSATIONS)
        return message

    def mark_messages_read(self, conversation_id: int, message_ids: List[int]) -> int:
        marked = self._post('/api/messages/mark-read', {'message_ids': message_ids})['marked']
        ids = set(message_ids)
        for message in self.cache.get(messages_key(conversation_id), []):
            if message.get('id') in ids:
                message['read'] = True
        self.invalidate(CONVERSATIONS)
        return marked

    def get_unread_message_count(self) -> int:
        return self._get('/api/messages/unread-count')['count']

    # --- notifications ---
    def get_notifications(self, refresh: bool = False) -> List[Dict[str, Any]]:
        if NOTIFICATIONS not in self.cache or refresh:
            data = self._get('/api/notifications')
            self.cache[NOTIFICATIONS] = list(data['notifications'])
            self.unread_count = data['unread_count']
            self._known_notification_ids = {n['id'] for n in data['notifications']}
        return self.cache[NOTIFICATIONS]

    def mark_notification_read(self, notification_id: int) -> Dict[str, Any]:
        notification = self._request('PATCH', f'/api/notifications/{notification_id}')['notification']
        for cached in self.cache.get(NOTIFICATIONS, []):
            if cached.get('id') == notification_id:
                if not cached.get('is_read'):
                    self.unread_count = max(0, self.unread_count - 1)
                cached.update(notification)
        return notification

    def mark_all_notifications_read(self) -> int:
        marked = self._post('/api/notifications/mark-all-read')['marked']
        for cached in self.cache.get(NOTIFICATIONS, []):
            cached['is_read'] = True
        self.unread_count = 0
        return marked

    # --- live events ---
    @property
    def user_channel(self) -> str:
        return f"private-user-{self.user_id}"

    def authorize_channel(self, socket_id: str, channel_name: Optional[str] = None) -> Dict[str, Any]:
        """Fetch the subscription signature for the user's private channel"""
        return self._request('POST', '/api/pusher/auth',
                             form={'socket_id': socket_id, 'channel_name': channel_name or self.user_channel})

    def handle_event(self, event: str, payload: Dict[str, Any]) -> None:
        """Apply a relay event to the cache; unknown events are ignored"""
        if event == 'new-message':
            self._merge(messages_key(payload['conversation_id']), payload)
            self.invalidate(CONVERSATIONS)
        elif event == 'notification':
            if payload['id'] in self._known_notification_ids:
                return
            self._known_notification_ids.add(payload['id'])
            self._merge(NOTIFICATIONS, payload)
            if not payload.get('is_read'):
                self.unread_count += 1
        elif event.startswith('profile-update-') and payload.get('type') == 'PROFILE_IMAGE_UPDATE':
            user = payload['user']
            self._patch_posts(lambda post: (post.get('author') or {}).get('id') == user['id'],
                              lambda post: post['author'].update(image=user.get('image')))
        else:
            logger.debug(f"Ignoring relay event {event}")
