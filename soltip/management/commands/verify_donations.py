"""
SOLTIP Verify Donations Management Command

Donations are recorded as soon as the supporter's browser reports the
transaction signature. This command looks up the unverified ones on the
Solana network and marks those whose transaction credited the creator.

Each run checks the donations that were never checked first, then those
checked longest ago, so donations that never confirm rotate to the back of
the queue instead of blocking newer ones.

Should be run periodically via cron job or similar scheduling system.

Usage:
    python manage.py verify_donations [--limit N]
"""

import logging

from django.core.management.base import BaseCommand
from django.db.models import F
from django.utils import timezone

from soltip.models import Donation
from soltip.transactions import SolanaRpcError, split_tip, verify_tip_signature

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """
    Django management command to verify recorded donations on chain.

    Each unverified donation is checked against the creator's share of the
    tip. Every attempt, successful or not, stamps ``last_checked_at``.
    """
    help = 'Verify unconfirmed donation signatures against the Solana network'

    def add_arguments(self, parser):
        parser.add_argument(
            '--limit',
            type=int,
            default=100,
            help='Maximum number of donations to check in this run',
        )

    def handle(self, *args, **options):
        """
        Execute the verification pass.

        Args:
            *args: Positional arguments (unused)
            **options: Command options (``limit``)
        """
        donations = list(
            Donation.objects.filter(verified=False)
            .select_related('recipient')
            .order_by(F('last_checked_at').asc(nulls_first=True), 'created_at')[:options['limit']]
        )

        verified = unconfirmed = failed = 0
        for donation in donations:
            expected = split_tip(donation.amount).creator_lamports
            donation.last_checked_at = timezone.now()
            try:
                ok = verify_tip_signature(donation.signature, donation.recipient.wallet_address, expected)
            except SolanaRpcError as e:
                failed += 1
                logger.warning("Could not verify donation %s: %s", donation.signature, e)
                donation.save(update_fields=['last_checked_at'])
                continue

            if ok:
                donation.verified = True
                verified += 1
            else:
                unconfirmed += 1
            donation.save(update_fields=['verified', 'last_checked_at'])

        self.stdout.write(
            self.style.SUCCESS(
                f'Verified {verified} donation(s); {unconfirmed} unconfirmed, {failed} failed'
            )
        )
