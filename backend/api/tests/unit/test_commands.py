"""
Unit tests for management commands
"""
import pytest
from io import StringIO
from django.core.management import call_command
from django.core.management.base import CommandError

from api.models import Post, PostComment, PostReaction, User
from api.tests.helpers.factories import AdminUserFactory, PostCommentFactory, PostFactory, UserFactory


def _run(*args, **kwargs):
    out = StringIO()
    call_command(*args, stdout=out, **kwargs)
    return out.getvalue()


@pytest.mark.django_db
@pytest.mark.unit
class TestSeedAdmin:

    def test_creates_super_admin(self):
        output = _run('seed_admin', email='ops@test.com', password='Seed#Pass99')
        admin = User.objects.get(email='ops@test.com')
        assert admin.role == 'super_admin'
        assert admin.is_email_verified is True
        assert admin.check_password('Seed#Pass99')
        assert 'Seeded super admin' in output

    def test_generates_password_when_missing(self, settings):
        settings.DEFAULT_ADMIN_PASSWORD = ''
        output = _run('seed_admin', email='generated@test.com')
        assert 'Generated password:' in output
        assert User.objects.filter(email='generated@test.com', role='super_admin').exists()

    def test_existing_admin_untouched_without_force(self):
        _run('seed_admin', email='ops@test.com', password='Seed#Pass99')
        output = _run('seed_admin', email='ops@test.com', password='Other#Pass99')
        assert 'already exists' in output
        assert User.objects.get(email='ops@test.com').check_password('Seed#Pass99')

    def test_force_reset_clears_lockout(self):
        _run('seed_admin', email='ops@test.com', password='Seed#Pass99')
        User.objects.filter(email='ops@test.com').update(failed_login_attempts=5)
        _run('seed_admin', email='ops@test.com', password='Other#Pass99', force_reset=True)
        admin = User.objects.get(email='ops@test.com')
        assert admin.check_password('Other#Pass99')
        assert admin.failed_login_attempts == 0

    def test_weak_password_rejected(self):
        with pytest.raises(CommandError):
            _run('seed_admin', email='ops@test.com', password='weak')

    def test_marks_admins_verified(self):
        admin = AdminUserFactory(is_email_verified=False)
        _run('seed_admin', email='ops@test.com', password='Seed#Pass99')
        admin.refresh_from_db()
        assert admin.is_email_verified is True


@pytest.mark.django_db
@pytest.mark.unit
class TestPurgeReels:

    def _reel(self):
        reel = PostFactory(content_type='reel', text_content='')
        PostCommentFactory(post=reel)
        PostReaction.objects.create(post=reel, user=UserFactory(), reaction_type='like')
        return reel

    def test_dry_run_keeps_everything(self):
        self._reel()
        output = _run('purge_reels', dry_run=True)
        assert 'Found 1 reel(s)' in output
        assert Post.objects.filter(content_type='reel').count() == 1

    def test_purge(self):
        self._reel()
        self._reel()
        keep = PostFactory()
        output = _run('purge_reels')
        assert 'Deleted 2 reel(s)' in output
        assert list(Post.objects.all()) == [keep]
        assert PostComment.objects.count() == 0
        assert PostReaction.objects.count() == 0
