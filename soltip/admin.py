"""
SOLTIP Django Admin Configuration

Provides administrative access to Profile and Donation data.

Key features:
- Profile wallet addresses are read-only once set (tips already point at them)
- Donations are searchable by signature and show their verification state
"""

from django.contrib import admin

from .models import Donation, Profile


class ProfileAdmin(admin.ModelAdmin):
    """
    Admin interface configuration for Profile model.

    Wallet addresses cannot be edited on existing profiles: recorded
    donations and minted receipts refer to them.
    """
    list_display = ('username', 'display_name', 'wallet_address', 'minimum_tip', 'created_at')
    search_fields = ('username', 'display_name', 'wallet_address')

    def get_readonly_fields(self, request, obj=None):
        """
        Args:
            request: HTTP request object
            obj: Profile instance being edited (None for new objects)

        Returns:
            tuple: Fields that should be read-only
        """
        if obj and obj.wallet_address:
            return ('wallet_address',)
        return ()


class DonationAdmin(admin.ModelAdmin):
    list_display = ('donor', 'recipient', 'amount', 'verified', 'last_checked_at', 'created_at')
    list_filter = ('verified',)
    search_fields = ('signature', 'donor__username', 'recipient__username')
    readonly_fields = ('signature', 'nft_mint', 'last_checked_at')


admin.site.register(Profile, ProfileAdmin)
admin.site.register(Donation, DonationAdmin)
