import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("event_id", models.CharField(help_text="Unique ID from Provider", max_length=100, unique=True)),
                ("event_type", models.CharField(db_index=True, max_length=100)),
                ("provider", models.CharField(default="STRIPE", max_length=20)),
                ("is_processed", models.BooleanField(default=False)),
                ("payload", models.JSONField()),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
