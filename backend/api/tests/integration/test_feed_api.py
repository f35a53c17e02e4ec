"""
Integration tests for the feed: posts, reactions and comments
"""
import pytest
from rest_framework import status
from rest_framework.test import APIClient

from api.exceptions import ErrorCodes
from api.models import Notification, Post, PostComment, UserBlock
from api.tests.helpers.factories import PostCommentFactory, PostFactory, UserFactory
from api.tests.helpers.test_client import AuthenticatedAPIClient


@pytest.mark.django_db
@pytest.mark.integration
class TestPosts:
    """Test post creation and the feed"""

    def test_create_text_post(self):
        user = UserFactory()
        client = AuthenticatedAPIClient().authenticate_user(user)
        response = client.post('/api/posts/', {
            'content_type': 'text',
            'text_content': 'Shipped my <b>first</b> mural today',
            'activity_label': 'Painting',
        }, format='json')
        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['text_content'] == 'Shipped my first mural today'
        assert response.data['user']['id'] == str(user.id)
        assert response.data['reaction_counts'] == {}

    def test_text_post_requires_text(self):
        client = AuthenticatedAPIClient().authenticate_user(UserFactory())
        response = client.post('/api/posts/', {'content_type': 'text', 'text_content': ''}, format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_media_post_requires_file(self):
        client = AuthenticatedAPIClient().authenticate_user(UserFactory())
        response = client.post('/api/posts/', {'content_type': 'image'}, format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_anonymous_cannot_post(self):
        response = APIClient().post('/api/posts/', {'content_type': 'text', 'text_content': 'hi'}, format='json')
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_feed_is_newest_first_and_filtered(self):
        viewer = UserFactory()
        older = PostFactory(text_content='older')
        newer = PostFactory(text_content='newer')
        PostFactory(is_hidden=True)
        PostFactory(user=UserFactory(account_status='banned'))
        blocked_author = UserFactory()
        PostFactory(user=blocked_author)
        UserBlock.objects.create(blocker=blocked_author, blocked=viewer)

        client = AuthenticatedAPIClient().authenticate_user(viewer)
        response = client.get('/api/posts/')
        assert response.status_code == status.HTTP_200_OK
        ids = [row['id'] for row in response.data['results']]
        assert ids == [str(newer.id), str(older.id)]

    def test_feed_filter_by_user(self):
        author = UserFactory()
        PostFactory(user=author)
        PostFactory()
        response = APIClient().get('/api/posts/', {'user': str(author.id)})
        assert response.data['count'] == 1

    def test_feed_filter_rejects_malformed_user(self):
        response = APIClient().get('/api/posts/', {'user': 'not-a-uuid'})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == ErrorCodes.VALIDATION_ERROR
        assert 'user' in response.data['field_errors']

    def test_only_author_deletes(self):
        post = PostFactory()
        client = AuthenticatedAPIClient().authenticate_user(UserFactory())
        assert client.delete(f'/api/posts/{post.id}/').status_code == status.HTTP_403_FORBIDDEN

        client.authenticate_user(post.user)
        assert client.delete(f'/api/posts/{post.id}/').status_code == status.HTTP_204_NO_CONTENT
        assert not Post.objects.filter(pk=post.pk).exists()


@pytest.mark.django_db
@pytest.mark.integration
class TestPostReactions:
    """Test the reaction toggle over HTTP"""

    def test_toggle_cycle(self):
        post = PostFactory()
        client = AuthenticatedAPIClient().authenticate_user(UserFactory())
        url = f'/api/posts/{post.id}/react/'

        first = client.post(url, {'reaction_type': 'like'}, format='json')
        assert first.status_code == status.HTTP_200_OK
        assert first.data == {'status': 'set', 'counts': {'like': 1}, 'my_reaction': 'like'}

        second = client.post(url, {'reaction_type': 'celebrate'}, format='json')
        assert second.data == {'status': 'updated', 'counts': {'celebrate': 1}, 'my_reaction': 'celebrate'}

        third = client.post(url, {'reaction_type': 'celebrate'}, format='json')
        assert third.data == {'status': 'cleared', 'counts': {}, 'my_reaction': None}

    def test_default_kind_is_like(self):
        post = PostFactory()
        client = AuthenticatedAPIClient().authenticate_user(UserFactory())
        response = client.post(f'/api/posts/{post.id}/react/')
        assert response.data['counts'] == {'like': 1}

    def test_unknown_kind(self):
        post = PostFactory()
        client = AuthenticatedAPIClient().authenticate_user(UserFactory())
        response = client.post(f'/api/posts/{post.id}/react/', {'reaction_type': 'meh'}, format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_reaction_summary_and_feed_fields(self):
        post = PostFactory()
        reactor = UserFactory()
        client = AuthenticatedAPIClient().authenticate_user(reactor)
        client.post(f'/api/posts/{post.id}/react/', {'reaction_type': 'fire'}, format='json')

        summary = client.get(f'/api/posts/{post.id}/reactions/')
        assert summary.data == {'counts': {'fire': 1}, 'my_reaction': 'fire'}

        detail = client.get(f'/api/posts/{post.id}/')
        assert detail.data['reaction_counts'] == {'fire': 1}
        assert detail.data['my_reaction'] == 'fire'
        assert Notification.objects.filter(user=post.user, type='post_reaction').count() == 1

    def test_hidden_post_cannot_be_reacted(self):
        post = PostFactory(is_hidden=True)
        client = AuthenticatedAPIClient().authenticate_user(UserFactory())
        response = client.post(f'/api/posts/{post.id}/react/', {'reaction_type': 'like'}, format='json')
        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.django_db
@pytest.mark.integration
class TestComments:
    """Test comments and stars"""

    def test_comment_and_list(self):
        post = PostFactory()
        commenter = UserFactory()
        client = AuthenticatedAPIClient().authenticate_user(commenter)
        response = client.post(f'/api/posts/{post.id}/comments/', {'content': 'Love the colours'}, format='json')
        assert response.status_code == status.HTTP_201_CREATED
        assert Notification.objects.filter(user=post.user, type='post_comment').exists()

        listing = APIClient().get(f'/api/posts/{post.id}/comments/')
        assert listing.data['count'] == 1
        assert listing.data['results'][0]['content'] == 'Love the colours'

    def test_anonymous_cannot_comment(self):
        post = PostFactory()
        response = APIClient().post(f'/api/posts/{post.id}/comments/', {'content': 'hi'}, format='json')
        assert response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)

    def test_reply_notifies_parent_author(self):
        parent = PostCommentFactory()
        replier = UserFactory()
        client = AuthenticatedAPIClient().authenticate_user(replier)
        response = client.post(f'/api/posts/{parent.post_id}/comments/', {
            'content': 'Agreed', 'parent_id': str(parent.id),
        }, format='json')
        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['parent'] == str(parent.id)
        assert Notification.objects.filter(user=parent.user, type='comment_reply').exists()

    def test_reply_to_comment_on_other_post(self):
        stray = PostCommentFactory()
        post = PostFactory()
        client = AuthenticatedAPIClient().authenticate_user(UserFactory())
        response = client.post(f'/api/posts/{post.id}/comments/', {
            'content': 'Hmm', 'parent_id': str(stray.id),
        }, format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_star_toggle(self):
        comment = PostCommentFactory()
        client = AuthenticatedAPIClient().authenticate_user(UserFactory())
        first = client.post(f'/api/comments/{comment.id}/star/')
        assert first.status_code == status.HTTP_200_OK
        assert first.data['liked'] is True
        assert first.data['star_count'] == 1

        second = client.post(f'/api/comments/{comment.id}/star/')
        assert second.data['liked'] is False
        assert second.data['star_count'] == 0

    def test_delete_is_soft(self):
        comment = PostCommentFactory()
        client = AuthenticatedAPIClient().authenticate_user(UserFactory())
        assert client.delete(f'/api/comments/{comment.id}/').status_code == status.HTTP_403_FORBIDDEN

        client.authenticate_user(comment.user)
        assert client.delete(f'/api/comments/{comment.id}/').status_code == status.HTTP_204_NO_CONTENT
        comment.refresh_from_db()
        assert comment.is_deleted is True
        listing = client.get(f'/api/posts/{comment.post_id}/comments/')
        assert listing.data['results'][0]['content'] == '[deleted]'
        assert PostComment.objects.filter(pk=comment.pk).exists()
