from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('soltip', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='donation',
            name='last_checked_at',
            field=models.DateTimeField(blank=True, null=True),
        ),
    ]
