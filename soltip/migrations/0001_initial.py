from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models

import soltip.validators


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Profile',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('wallet_address', models.CharField(max_length=44, unique=True, validators=[soltip.validators.validate_solana_address])),
                ('username', models.CharField(max_length=20, unique=True, validators=[soltip.validators.validate_username])),
                ('display_name', models.CharField(max_length=50, validators=[django.core.validators.MinLengthValidator(2)])),
                ('bio', models.TextField(blank=True, max_length=500, null=True, validators=[django.core.validators.MaxLengthValidator(500)])),
                ('minimum_tip', models.DecimalField(decimal_places=9, default=Decimal('0.1'), max_digits=18, validators=[soltip.validators.validate_minimum_tip])),
                ('avatar_url', models.URLField(blank=True, max_length=500, null=True)),
                ('banner_url', models.URLField(blank=True, max_length=500, null=True)),
                ('social_links', models.JSONField(blank=True, null=True, validators=[soltip.validators.validate_social_links])),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='Donation',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=9, max_digits=18)),
                ('comment', models.TextField(blank=True, max_length=500, null=True, validators=[django.core.validators.MaxLengthValidator(500)])),
                ('signature', models.CharField(max_length=88, unique=True, validators=[soltip.validators.validate_signature])),
                ('nft_mint', models.CharField(blank=True, max_length=44, null=True, unique=True, validators=[soltip.validators.validate_solana_address])),
                ('verified', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('donor', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='sent_donations', to='soltip.profile')),
                ('recipient', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='received_donations', to='soltip.profile')),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['recipient', '-created_at'], name='soltip_don_recipient_idx'),
                    models.Index(fields=['verified'], name='soltip_don_verified_idx'),
                ],
            },
        ),
    ]
