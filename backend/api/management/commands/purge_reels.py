"""
Delete every reel post together with its reactions and comments.

Usage:
    python manage.py purge_reels --dry-run
    python manage.py purge_reels
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from api.models import Post, PostComment, PostReaction


class Command(BaseCommand):
    help = 'Delete all reel posts and their reactions and comments'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List what would be deleted without deleting anything',
        )

    def handle(self, *args, **options):
        reels = Post.objects.filter(content_type='reel').order_by('created_at')
        total_count = reels.count()
        self.stdout.write(f'Found {total_count} reel(s) to delete.')

        if options['dry_run']:
            self.stdout.write(self.style.WARNING('Dry-run mode - no changes will be made.'))
            for reel in reels.select_related('user')[:20]:
                self.stdout.write(f'  - Reel {reel.id} by {reel.user.email} (created: {reel.created_at:%Y-%m-%d %H:%M})')
            if total_count > 20:
                self.stdout.write(f'  ... and {total_count - 20} more')
            return

        if total_count == 0:
            return

        with transaction.atomic():
            reel_ids = list(reels.values_list('id', flat=True))
            comments, _ = PostComment.objects.filter(post_id__in=reel_ids).delete()
            reactions, _ = PostReaction.objects.filter(post_id__in=reel_ids).delete()
            Post.objects.filter(id__in=reel_ids).delete()

        self.stdout.write(self.style.SUCCESS(
            f'Deleted {len(reel_ids)} reel(s), {reactions} reaction(s) and {comments} comment row(s).'
        ))
