"""
SOLTIP Validators

This module provides custom validation functions for the SOLTIP application:
- Solana wallet address and transaction signature validation
- Username validation with reserved route names
- Tip amount and minimum tip bounds
- Social link structure validation
- File size validation for uploaded images

All validators raise Django ValidationError on invalid input.
"""

from decimal import Decimal, InvalidOperation
import re

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import URLValidator
from solders.pubkey import Pubkey
from solders.signature import Signature


USERNAME_RE = re.compile(r'^[a-zA-Z0-9_-]+$')
BASE58_RE = re.compile(r'^[1-9A-HJ-NP-Za-km-z]+$')

SOCIAL_LINK_KEYS = ('twitter', 'github', 'website')

MIN_MINIMUM_TIP = Decimal('0.01')
MAX_MINIMUM_TIP = Decimal('100')

# Donation.amount is DecimalField(max_digits=18, decimal_places=9)
MAX_TIP_AMOUNT = Decimal('999999999')

# Top-level paths served by the site; a profile with one of these usernames
# would be shadowed by the page routes.
RESERVED_USERNAMES = {
    'about', 'admin', 'api', 'create', 'explore', 'privacy', 'terms', 'static', 'media',
    'login', 'logout', 'signup', 'settings', 'dashboard', 'support', 'help',
    'soltip', 'soltipp', 'platform', 'wallet', 'wallets', 'fees', 'receipts', 'upload',
}


def validate_file_size(file):
    """
    Validate that an uploaded file is within the configured size limit.

    Args:
        file: Django UploadedFile object to validate

    Raises:
        ValidationError: If file size exceeds UPLOAD_MAX_BYTES
    """
    max_bytes = settings.UPLOAD_MAX_BYTES
    if file.size > max_bytes:
        raise ValidationError(f"File size cannot exceed {max_bytes // 1024} KB.")


def validate_solana_address(value):
    """
    Validate a base58-encoded Solana public key.

    Addresses are 32 bytes encoded as 32 to 44 base58 characters. The
    decoding itself is delegated to solders so that strings of the right
    shape but the wrong byte length are rejected too.

    Args:
        value: String to validate as a Solana wallet address

    Raises:
        ValidationError: If the value is not a valid public key
    """
    if not isinstance(value, str) or not 32 <= len(value) <= 44 or not BASE58_RE.match(value):
        raise ValidationError("Invalid Solana wallet address.")
    try:
        Pubkey.from_string(value)
    except ValueError:
        raise ValidationError("Invalid Solana wallet address.")


def validate_signature(value):
    """Validate a base58-encoded transaction signature (64 bytes)."""
    if not isinstance(value, str) or not BASE58_RE.match(value):
        raise ValidationError("Invalid transaction signature.")
    try:
        Signature.from_string(value)
    except ValueError:
        raise ValidationError("Invalid transaction signature.")


def validate_username(value):
    """
    Validate creator usernames.

    Usernames appear in profile URLs (``/<username>/``), so they are limited
    to URL-safe characters and may not collide with the site's own routes.

    Args:
        value: Username string to validate

    Raises:
        ValidationError: If username violates any validation rules

    Rules enforced:
    - 3 to 20 characters
    - Letters, numbers, underscores and hyphens only
    - Not one of the reserved route names (case-insensitive)
    """
    if not value or not isinstance(value, str):
        raise ValidationError("Invalid username.")

    if len(value) < 3:
        raise ValidationError("Username must be at least 3 characters.")
    if len(value) > 20:
        raise ValidationError("Username must be at most 20 characters.")
    if not USERNAME_RE.match(value):
        raise ValidationError("Username can only contain letters, numbers, underscores, and hyphens.")

    if value.lower() in RESERVED_USERNAMES:
        raise ValidationError("This username is unavailable.")


def parse_sol_amount(value):
    """
    Convert a JSON number or string to a Decimal SOL amount.

    Floats are routed through ``str`` so that ``0.1`` stays ``Decimal('0.1')``.

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError("Amount must be a number.")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number.")
    if not amount.is_finite():
        raise ValidationError("Amount must be a number.")
    return amount


def validate_minimum_tip(value):
    """Minimum tips are bounded to 0.01 to 100 SOL."""
    amount = parse_sol_amount(value)
    if amount < MIN_MINIMUM_TIP:
        raise ValidationError("Minimum tip must be at least 0.01 SOL.")
    if amount > MAX_MINIMUM_TIP:
        raise ValidationError("Minimum tip must be at most 100 SOL.")


def validate_tip_amount(value):
    """Tip amounts must be positive, representable in lamports and fit a stored donation."""
    amount = parse_sol_amount(value)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero.")
    if amount.normalize().as_tuple().exponent < -9:
        raise ValidationError("Amount cannot have more than 9 decimal places.")
    if amount > MAX_TIP_AMOUNT:
        raise ValidationError("Amount cannot exceed 999,999,999 SOL.")


def validate_social_links(value):
    """
    Validate the social links structure.

    Accepts ``None`` or a mapping whose keys are a subset of
    ``twitter``, ``github`` and ``website``; every value is either empty or
    an http(s) URL.

    Raises:
        ValidationError: On unknown keys or malformed URLs
    """
    if value is None:
        return
    if not isinstance(value, dict):
        raise ValidationError("Social links must be an object.")

    unknown = set(value) - set(SOCIAL_LINK_KEYS)
    if unknown:
        raise ValidationError(f"Unknown social link(s): {', '.join(sorted(unknown))}.")

    url_validator = URLValidator(schemes=['http', 'https'])
    for key, link in value.items():
        if link in (None, ''):
            continue
        if not isinstance(link, str):
            raise ValidationError(f"{key} link must be a URL.")
        try:
            url_validator(link)
        except ValidationError:
            raise ValidationError(f"{key} link must be a valid URL.")
