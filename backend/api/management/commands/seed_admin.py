"""
Create the default super admin if it does not exist yet.

Usage:
    python manage.py seed_admin
    python manage.py seed_admin --email=ops@example.com --password='S3cure!pass'
    python manage.py seed_admin --force-reset

The e-mail and password default to DEFAULT_ADMIN_EMAIL / DEFAULT_ADMIN_PASSWORD.
Without a configured password a random one is generated and printed once.
"""
import secrets

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from api.models import User
from api.utils import password_complexity_errors


class Command(BaseCommand):
    help = 'Seed the default super admin account'

    def add_arguments(self, parser):
        parser.add_argument(
            '--email',
            default=None,
            help='Admin e-mail (default: DEFAULT_ADMIN_EMAIL)',
        )
        parser.add_argument(
            '--password',
            default=None,
            help='Admin password (default: DEFAULT_ADMIN_PASSWORD)',
        )
        parser.add_argument(
            '--force-reset',
            action='store_true',
            help='Reset the password of an existing admin account',
        )

    def handle(self, *args, **options):
        email = options['email'] or settings.DEFAULT_ADMIN_EMAIL
        password = options['password'] or settings.DEFAULT_ADMIN_PASSWORD
        generated = not password
        if generated:
            password = f"Dx!{secrets.token_urlsafe(12)}9a"

        errors = password_complexity_errors(password)
        if errors:
            raise CommandError(f"Admin password rejected: {' '.join(errors)}")

        with transaction.atomic():
            user = User.objects.filter(email__iexact=email).first()
            if user is None:
                user = User.objects.create_user(
                    email=email,
                    password=password,
                    full_name='Super Admin',
                    role='super_admin',
                    is_staff=True,
                    is_email_verified=True,
                    onboarding_completed=True,
                )
                self.stdout.write(self.style.SUCCESS(f'Seeded super admin: {email}'))
                if generated:
                    self.stdout.write(f'Generated password: {password}')
            elif options['force_reset']:
                user.set_password(password)
                user.is_email_verified = True
                user.failed_login_attempts = 0
                user.locked_until = None
                user.save(update_fields=['password', 'is_email_verified', 'failed_login_attempts', 'locked_until'])
                self.stdout.write(self.style.SUCCESS(f'Reset super admin password for {email}'))
                if generated:
                    self.stdout.write(f'Generated password: {password}')
            else:
                self.stdout.write(f'Super admin {email} already exists, nothing to do')

            # Admins must never be locked out behind e-mail verification
            verified = User.objects.filter(
                role__in=['admin', 'super_admin'], is_email_verified=False
            ).update(is_email_verified=True)
            if verified:
                self.stdout.write(f'Marked {verified} admin account(s) as verified')
