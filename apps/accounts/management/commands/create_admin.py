import os

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from apps.accounts.models import Role


class Command(BaseCommand):
    help = "Create or promote a storefront admin from ADMIN_EMAIL / ADMIN_PASSWORD (or --email / --password)."

    def add_arguments(self, parser):
        parser.add_argument("--email", default=os.getenv("ADMIN_EMAIL"))
        parser.add_argument("--password", default=os.getenv("ADMIN_PASSWORD"))

    def handle(self, *args, **options):
        if not settings.DEBUG and os.getenv("ALLOW_CREATE_ADMIN_IN_PROD") != "True":
            raise CommandError("Production Lock: Set ALLOW_CREATE_ADMIN_IN_PROD=True to run this.")

        email, password = options["email"], options["password"]
        if not email or not password:
            raise CommandError("Missing ADMIN_EMAIL or ADMIN_PASSWORD.")

        User = get_user_model()
        user = User.objects.filter(email__iexact=email).first()

        if user is None:
            User.objects.create_superuser(email=email, password=password, role=Role.ADMIN)
            self.stdout.write(self.style.SUCCESS(f"Created admin: {email.lower()}"))
            return

        # Existing account: promote and reset the password
        user.is_staff = True
        user.is_superuser = True
        user.role = Role.ADMIN
        user.set_password(password)
        user.save(update_fields=["is_staff", "is_superuser", "role", "password"])
        self.stdout.write(self.style.WARNING(f"Promoted existing user to admin: {user.email}"))
