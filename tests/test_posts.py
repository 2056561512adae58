"""
Feed, post, comment and upvote tests
"""
from datetime import datetime, timedelta

import pytest

from app import db
from models import Post, Comment, PostUpvote, Tag
from post_utils import PostManager

pytestmark = pytest.mark.integration


@pytest.fixture
def seven_posts(alice, make_post):
    """Posts p1..p7, p7 newest"""
    start = datetime.utcnow() - timedelta(hours=1)
    return [make_post(alice, f'p{i}', created_at=start + timedelta(minutes=i)) for i in range(1, 8)]


def _titles(page):
    return [item['title'] for item in page['items']]


class TestFeed:

    def test_cursor_pages_cover_feed_once(self, client, seven_posts):
        first = client.get('/api/posts?limit=3').get_json()
        assert _titles(first) == ['p7', 'p6', 'p5']
        assert first['next_cursor'] == seven_posts[4].id

        second = client.get(f"/api/posts?limit=3&cursor={first['next_cursor']}").get_json()
        assert _titles(second) == ['p4', 'p3', 'p2']

        third = client.get(f"/api/posts?limit=3&cursor={second['next_cursor']}").get_json()
        assert _titles(third) == ['p1']
        assert third['next_cursor'] is None

    def test_default_page_size(self, client, seven_posts):
        page = client.get('/api/posts').get_json()
        assert len(page['items']) == 5
        assert page['next_cursor'] is not None

    def test_same_timestamp_ordered_by_id(self, client, alice, make_post):
        moment = datetime.utcnow()
        posts = [make_post(alice, f't{i}', created_at=moment) for i in range(3)]

        first = client.get('/api/posts?limit=2').get_json()
        assert _titles(first) == ['t2', 't1']
        second = client.get(f"/api/posts?limit=2&cursor={first['next_cursor']}").get_json()
        assert _titles(second) == ['t0']
        assert first['next_cursor'] == posts[1].id

    def test_unknown_cursor(self, client, seven_posts):
        response = client.get('/api/posts?cursor=99999')
        assert response.status_code == 400
        assert response.get_json()['details'] == {'field': 'cursor'}

    def test_category_filter(self, client, alice, make_post):
        make_post(alice, 'news', category='NEWS')
        make_post(alice, 'event', category='EVENTS')

        page = client.get('/api/posts?category=EVENTS').get_json()
        assert _titles(page) == ['event']
        assert client.get('/api/posts?category=GOSSIP').status_code == 400

    def test_unpublished_posts_hidden(self, client, alice, make_post):
        make_post(alice, 'draft', published=False)
        make_post(alice, 'live')
        assert _titles(client.get('/api/posts').get_json()) == ['live']

    def test_item_shape(self, client, alice, make_post):
        make_post(alice, 'shaped')
        item = client.get('/api/posts').get_json()['items'][0]
        assert item['author']['name'] == 'Alice'
        assert item['upvote_count'] == 0
        assert item['comment_count'] == 0
        assert item['tags'] == []

    def test_user_posts(self, client, alice, bob, make_post):
        make_post(alice, 'by alice')
        make_post(bob, 'by bob')

        page = client.get(f'/api/users/{bob.id}/posts').get_json()
        assert _titles(page) == ['by bob']
        assert client.get('/api/users/9999/posts').status_code == 404


class TestCreatePost:

    def test_create(self, alice_client, alice):
        response = alice_client.post('/api/posts', json={
            'title': 'Destination marketing trends',
            'content': 'Long form content',
            'category': 'THOUGHT_LEADERSHIP',
            'tags': ['Marketing', 'marketing', 'Travel'],
            'metadata': {'reading_time': 5},
            'featured_image': 'https://cdn.example.com/cover.png',
        })
        assert response.status_code == 201
        post = response.get_json()['post']
        assert post['author_id'] == alice.id
        assert post['metadata'] == {'reading_time': 5}
        assert sorted(tag['name'] for tag in post['tags']) == ['marketing', 'travel']
        assert Tag.query.count() == 2

    @pytest.mark.filterwarnings('error::sqlalchemy.exc.SAWarning')
    def test_tags_attached_without_flush_warnings(self, db_session, alice):
        db_session.add(Tag(name='events'))
        db_session.commit()

        post = PostManager.create_post(db, alice.id, {
            'title': 'Summit recap',
            'content': 'Notes',
            'category': 'NEWS',
            'tags': ['Events', 'Hospitality'],
        })

        assert sorted(tag.name for tag in post.tags) == ['events', 'hospitality']
        assert Tag.query.count() == 2
        assert db_session.get(Post, post.id).tags == post.tags

    def test_missing_title(self, alice_client):
        response = alice_client.post('/api/posts', json={'content': 'x', 'category': 'NEWS'})
        assert response.status_code == 400
        assert response.get_json()['details'] == {'missing': ['title']}

    def test_invalid_category(self, alice_client):
        response = alice_client.post('/api/posts', json={'title': 't', 'content': 'x', 'category': 'GOSSIP'})
        assert response.status_code == 400

    def test_invalid_video_url(self, alice_client):
        response = alice_client.post('/api/posts', json={
            'title': 't', 'content': 'x', 'category': 'VIDEOS', 'video_url': 'javascript:alert(1)'
        })
        assert response.status_code == 400
        assert response.get_json()['details'] == {'field': 'video_url'}

    def test_requires_authentication(self, client):
        response = client.post('/api/posts', json={'title': 't', 'content': 'x', 'category': 'NEWS'})
        assert response.status_code == 401


class TestDeletePost:

    def test_author_deletes_post_with_comments(self, alice_client, alice, bob, make_post):
        post_id = make_post(alice).id
        PostManager.add_comment(db, bob.id, post_id, 'Nice')
        PostManager.set_upvote(db, bob.id, post_id, True)

        assert alice_client.delete(f'/api/posts/{post_id}').status_code == 200
        assert Post.query.count() == 0
        assert Comment.query.count() == 0
        assert PostUpvote.query.count() == 0

    def test_other_user_forbidden(self, bob_client, alice, make_post):
        post_id = make_post(alice).id
        assert bob_client.delete(f'/api/posts/{post_id}').status_code == 403
        assert Post.query.count() == 1

    def test_admin_deletes_any_post(self, login_as, admin_user, alice, make_post):
        post_id = make_post(alice).id
        assert login_as(admin_user).delete(f'/api/posts/{post_id}').status_code == 200

    def test_unknown_post(self, alice_client):
        assert alice_client.delete('/api/posts/999').status_code == 404


class TestComments:

    def test_add_and_list(self, alice_client, bob_client, alice, make_post):
        post_id = make_post(alice).id

        response = bob_client.post(f'/api/posts/{post_id}/comments', json={'content': 'First!'})
        assert response.status_code == 201
        assert response.get_json()['comment']['author']['name'] == 'Bob'
        alice_client.post(f'/api/posts/{post_id}/comments', json={'content': 'Thanks'})

        comments = alice_client.get(f'/api/posts/{post_id}/comments').get_json()['comments']
        assert [c['content'] for c in comments] == ['Thanks', 'First!']

    def test_empty_comment(self, bob_client, alice, make_post):
        post_id = make_post(alice).id
        response = bob_client.post(f'/api/posts/{post_id}/comments', json={'content': '  '})
        assert response.status_code == 400
        assert response.get_json()['message'] == 'Comment content is required'

    def test_unknown_post(self, bob_client):
        assert bob_client.post('/api/posts/999/comments', json={'content': 'hi'}).status_code == 404
        assert bob_client.get('/api/posts/999/comments').status_code == 404


class TestUpvotes:

    def test_upvote_is_idempotent(self, bob_client, alice, make_post):
        post_id = make_post(alice).id

        first = bob_client.post(f'/api/posts/{post_id}/upvote').get_json()
        second = bob_client.post(f'/api/posts/{post_id}/upvote').get_json()
        assert first['upvote_count'] == 1
        assert second['upvote_count'] == 1
        assert PostUpvote.query.count() == 1

    def test_remove_missing_upvote_is_noop(self, bob_client, alice, make_post):
        post_id = make_post(alice).id
        response = bob_client.delete(f'/api/posts/{post_id}/upvote')
        assert response.status_code == 200
        assert response.get_json()['upvote_count'] == 0

    def test_toggle_twice_restores_count(self, bob_client, carol_client, alice, make_post):
        post_id = make_post(alice).id
        carol_client.post('/api/posts/upvote', json={'post_id': post_id, 'action': 'upvote'})

        up = bob_client.post('/api/posts/upvote', json={'post_id': post_id, 'action': 'upvote'}).get_json()
        down = bob_client.post('/api/posts/upvote', json={'post_id': post_id, 'action': 'remove'}).get_json()
        assert up == {'success': True, 'post_id': post_id, 'upvoted': True, 'upvote_count': 2}
        assert down['upvote_count'] == 1

    def test_invalid_action(self, bob_client, alice, make_post):
        post_id = make_post(alice).id
        response = bob_client.post('/api/posts/upvote', json={'post_id': post_id, 'action': 'love'})
        assert response.status_code == 400

    def test_unknown_post(self, bob_client):
        response = bob_client.post('/api/posts/upvote', json={'post_id': 999, 'action': 'upvote'})
        assert response.status_code == 404


class TestProfile:

    def test_get_profile(self, client, alice):
        user = client.get(f'/api/users/{alice.id}/profile').get_json()['user']
        assert user['name'] == 'Alice'
        assert 'password_hash' not in user
        assert client.get('/api/users/999/profile').status_code == 404

    def test_partial_update(self, alice_client, alice):
        response = alice_client.patch(f'/api/users/{alice.id}/profile', json={
            'bio': 'Hotelier',
            'website': 'https://alice.example.com',
            'linkedin': 'https://linkedin.com/in/alice',
            'interests': ['ecotourism'],
        })
        assert response.status_code == 200
        user = response.get_json()['user']
        assert user['bio'] == 'Hotelier'
        assert user['interests'] == ['ecotourism']
        assert user['social_links']['linkedin'] == 'https://linkedin.com/in/alice'

        user = alice_client.patch(f'/api/users/{alice.id}/profile', json={'location': 'Lisbon'}).get_json()['user']
        assert user['bio'] == 'Hotelier'
        assert user['location'] == 'Lisbon'

        user = alice_client.patch(f'/api/users/{alice.id}/profile', json={'website': ''}).get_json()['user']
        assert user['website'] is None

    def test_invalid_website(self, alice_client, alice):
        response = alice_client.patch(f'/api/users/{alice.id}/profile', json={'website': 'not a url'})
        assert response.status_code == 400

    def test_only_owner_can_edit(self, bob_client, alice):
        response = bob_client.patch(f'/api/users/{alice.id}/profile', json={'bio': 'hacked'})
        assert response.status_code == 403

    def test_image_update_broadcasts(self, alice_client, alice, relay_events):
        image = 'https://cdn.example.com/alice.png'
        response = alice_client.patch(f'/api/users/{alice.id}/profile/image', json={'image': image})
        assert response.status_code == 200
        assert response.get_json()['image_url'] == image

        channel, event, payload = relay_events[0]
        assert channel == 'user-updates'
        assert event == f'profile-update-{alice.id}'
        assert payload['type'] == 'PROFILE_IMAGE_UPDATE'
        assert payload['user']['image'] == image
