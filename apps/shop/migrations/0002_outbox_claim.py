from django.db import migrations, models


class Migration(migrations.Migration):
    """
    Outbox events are claimed before sending:
      - status gains 'sending' (claimed by one dispatcher)
      - claimed_at lets dispatch_outbox reclaim events a crashed dispatcher left behind
    """

    dependencies = [
        ('shop', '0001_initial'),
    ]

    operations = [
        migrations.AlterField(
            model_name='outboxevent',
            name='status',
            field=models.CharField(
                choices=[('pending', 'Pending'), ('sending', 'Sending'), ('sent', 'Sent'), ('failed', 'Failed')],
                default='pending',
                max_length=20,
            ),
        ),
        migrations.AddField(
            model_name='outboxevent',
            name='claimed_at',
            field=models.DateTimeField(blank=True, null=True),
        ),
    ]
