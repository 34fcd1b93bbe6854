"""
SOLTIP Models

This module contains the core data models for the SOLTIP application:
- Profile: A wallet owner's public page; creators receive tips, supporters send them
- Donation: A recorded SOL tip from one profile to another, with its on-chain signature

Uniqueness of wallet addresses, usernames and transaction signatures is
enforced by the database. Every supporter gets a Profile as well: a wallet
that tips before creating a page is given an anonymous one.
"""

from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxLengthValidator, MinLengthValidator
from django.db import IntegrityError, models, transaction
from django.db.models import Count, Max, Q, Sum

from .transactions import explorer_url, sol_str, sol_to_lamports
from .validators import (
    validate_minimum_tip,
    validate_signature,
    validate_social_links,
    validate_solana_address,
    validate_username,
)


DEFAULT_MINIMUM_TIP = Decimal('0.1')


class ProfileQuerySet(models.QuerySet):

    def search(self, query):
        """Case-insensitive match on username, display name or bio."""
        if not query:
            return self
        return self.filter(
            Q(username__icontains=query)
            | Q(display_name__icontains=query)
            | Q(bio__icontains=query)
        )

    def with_tip_stats(self):
        """
        Annotate each profile with aggregates over its received donations.

        Adds ``total_tips`` (SOL, None when no donations), ``donation_count``
        and ``last_tip_at``.
        """
        return self.annotate(
            total_tips=Sum('received_donations__amount'),
            donation_count=Count('received_donations'),
            last_tip_at=Max('received_donations__created_at'),
        )


class ProfileManager(models.Manager.from_queryset(ProfileQuerySet)):

    def get_or_create_anonymous(self, wallet_address):
        """
        Return the profile for a wallet, creating a placeholder if needed.

        Placeholder profiles use the first 8 characters of the wallet as the
        username (lengthened while that is taken, then the last 20
        characters) and ``Anon <first 4>`` as the display name. A concurrent
        insert for the same wallet is resolved by re-reading it.

        Args:
            wallet_address: Base58 wallet address of the profile owner

        Returns:
            tuple: (Profile, created)

        Raises:
            IntegrityError: If every candidate username belongs to another wallet
        """
        profile = self.filter(wallet_address=wallet_address).first()
        if profile is not None:
            return profile, False

        candidates = [wallet_address[:n] for n in (8, 12, 16, 20)] + [wallet_address[-20:]]
        username = next(
            (c for c in candidates if not self.filter(username=c).exists()),
            candidates[-1],
        )

        try:
            with transaction.atomic():
                profile = self.create(
                    wallet_address=wallet_address,
                    username=username,
                    display_name=f"Anon {wallet_address[:4]}",
                )
        except IntegrityError:
            profile = self.filter(wallet_address=wallet_address).first()
            if profile is None:
                raise
            return profile, False
        return profile, True


class Profile(models.Model):
    """
    A public profile tied to one Solana wallet.

    Attributes:
        wallet_address: Base58 public key that receives tips (unique)
        username: URL slug for the profile page (unique, validated)
        display_name: Public name shown to supporters
        bio: Optional biography text
        minimum_tip: Smallest tip in SOL the creator accepts through the site
        avatar_url: Optional avatar image URL
        banner_url: Optional banner image URL
        social_links: Optional {"twitter", "github", "website"} URLs
    """
    wallet_address = models.CharField(max_length=44, unique=True, validators=[validate_solana_address])
    username = models.CharField(max_length=20, unique=True, validators=[validate_username])
    display_name = models.CharField(max_length=50, validators=[MinLengthValidator(2)])
    bio = models.TextField(max_length=500, blank=True, null=True, validators=[MaxLengthValidator(500)])
    minimum_tip = models.DecimalField(
        max_digits=18,
        decimal_places=9,
        default=DEFAULT_MINIMUM_TIP,
        validators=[validate_minimum_tip],
    )
    avatar_url = models.URLField(max_length=500, blank=True, null=True)
    banner_url = models.URLField(max_length=500, blank=True, null=True)
    social_links = models.JSONField(blank=True, null=True, validators=[validate_social_links])
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ProfileManager()

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.display_name} (@{self.username})"

    def short_wallet(self):
        """Return the wallet address abbreviated as ``ABCD...WXYZ``."""
        return f"{self.wallet_address[:4]}...{self.wallet_address[-4:]}"

    def explorer_url(self):
        return explorer_url('account', self.wallet_address)

    def to_donor_dict(self):
        """Summary used when the profile appears as a tip sender."""
        return {
            'walletAddress': self.wallet_address,
            'username': self.username,
            'displayName': self.display_name,
        }

    def to_dict(self):
        """
        Serialize the profile for the JSON API.

        Returns:
            dict: camelCase representation; ``minimumTip`` is in SOL
        """
        return {
            'id': self.id,
            'walletAddress': self.wallet_address,
            'username': self.username,
            'displayName': self.display_name,
            'bio': self.bio,
            'minimumTip': float(self.minimum_tip),
            'avatarUrl': self.avatar_url,
            'bannerUrl': self.banner_url,
            'socialLinks': self.social_links,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_card_dict(self):
        """
        Serialize a profile annotated by ``with_tip_stats`` for creator listings.

        Amounts are reported in lamports, matching what the explore page renders.
        """
        total_tips = getattr(self, 'total_tips', None) or Decimal('0')
        last_tip_at = getattr(self, 'last_tip_at', None)
        return {
            'username': self.username,
            'displayName': self.display_name,
            'avatarUrl': self.avatar_url,
            'bio': self.bio,
            'minTipAmount': sol_to_lamports(self.minimum_tip),
            'totalTipsReceived': sol_to_lamports(total_tips),
            'donationCount': getattr(self, 'donation_count', 0),
            'lastTipReceivedAt': last_tip_at.isoformat() if last_tip_at else None,
        }


class Donation(models.Model):
    """
    A SOL tip recorded after the supporter's wallet submitted the transaction.

    Attributes:
        donor: Profile of the sending wallet
        recipient: Profile of the receiving creator
        amount: Tip amount in SOL as chosen by the donor (before the platform fee split)
        comment: Optional message from donor to creator
        signature: On-chain transaction signature (unique)
        nft_mint: Mint address of the commemorative receipt, if one was minted
        verified: Whether the signature has been confirmed against the chain
        last_checked_at: When verification was last attempted, None if never
        created_at: When the donation was recorded
    """
    donor = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name='sent_donations')
    recipient = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name='received_donations')
    amount = models.DecimalField(max_digits=18, decimal_places=9)
    comment = models.TextField(max_length=500, blank=True, null=True, validators=[MaxLengthValidator(500)])
    signature = models.CharField(max_length=88, unique=True, validators=[validate_signature])
    nft_mint = models.CharField(
        max_length=44,
        unique=True,
        blank=True,
        null=True,
        validators=[validate_solana_address],
    )
    verified = models.BooleanField(default=False)
    last_checked_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['recipient', '-created_at'], name='soltip_don_recipient_idx'),
            models.Index(fields=['verified'], name='soltip_don_verified_idx'),
        ]

    def __str__(self):
        return f"{self.donor.display_name} tipped {self.amount} SOL to {self.recipient.display_name}"

    def amount_lamports(self):
        return sol_to_lamports(self.amount)

    def explorer_url(self):
        return explorer_url('tx', self.signature)

    def to_dict(self):
        """Serialize the donation, including a summary of the donor."""
        return {
            'id': self.id,
            'amount': float(self.amount),
            'comment': self.comment,
            'signature': self.signature,
            'nftMint': self.nft_mint,
            'verified': self.verified,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'donor': self.donor.to_donor_dict(),
        }

    def receipt_metadata(self):
        """
        Build the off-chain JSON metadata for the commemorative receipt.

        The on-chain metadata account points at this document through its
        ``uri``; the layout follows the Metaplex token metadata standard.

        Returns:
            dict: Metadata with name, symbol, description, image and attributes
        """
        description = self.comment or f"A {sol_str(self.amount)} SOL tip to @{self.recipient.username}"
        return {
            'name': settings.RECEIPT_NAME,
            'symbol': settings.RECEIPT_SYMBOL,
            'description': description,
            'image': self.recipient.avatar_url,
            'external_url': self.explorer_url(),
            'attributes': [
                {'trait_type': 'Amount (SOL)', 'value': sol_str(self.amount)},
                {'trait_type': 'From', 'value': self.donor.wallet_address},
                {'trait_type': 'To', 'value': self.recipient.wallet_address},
                {'trait_type': 'Recipient', 'value': self.recipient.username},
                {'trait_type': 'Signature', 'value': self.signature},
                {'trait_type': 'Date', 'value': self.created_at.date().isoformat()},
            ],
        }
