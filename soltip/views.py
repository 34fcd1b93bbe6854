"""
SOLTIP Views

This module contains all view functions for the SOLTIP application, handling:
- Public pages (home, explore, profile pages, profile creation, static pages)
- Profile JSON API (create, fetch, update, search)
- Donation JSON API (list and record tips)
- Tip transaction building for the supporter's wallet
- Image upload proxy and receipt metadata

API responses use camelCase keys and report errors as ``{"error": ...}``
with 400 for validation, 404 for missing resources, 409 for uniqueness
conflicts and 500 for unexpected failures.

API writes are CSRF-protected; the pages that call them set the CSRF cookie
and the page scripts send it back in the ``X-CSRFToken`` header.
"""

import json
import logging

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.http import Http404, JsonResponse
from django.shortcuts import get_object_or_404, render
from django.urls import reverse
from django.views.decorators.csrf import ensure_csrf_cookie
from django.views.decorators.http import require_GET, require_http_methods, require_POST
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .models import Donation, Profile
from .transactions import (
    PLATFORM_FEE_FIXED,
    PLATFORM_FEE_PERCENT,
    ReceiptRequest,
    SolanaRpcError,
    TransactionBuildError,
    create_tip_transaction,
    get_client,
    sol_str,
    sol_to_lamports,
    split_tip,
    verify_tip_signature,
)
from .uploads import UploadError, upload_image
from .validators import (
    parse_sol_amount,
    validate_signature,
    validate_solana_address,
    validate_tip_amount,
)

logger = logging.getLogger(__name__)

# Profile fields accepted from the API, mapped to model attributes
PROFILE_FIELDS = {
    'displayName': 'display_name',
    'bio': 'bio',
    'minimumTip': 'minimum_tip',
    'avatarUrl': 'avatar_url',
    'bannerUrl': 'banner_url',
    'socialLinks': 'social_links',
}

TEXT_PROFILE_FIELDS = ('displayName', 'bio', 'avatarUrl', 'bannerUrl')

RECENT_DONATIONS_LIMIT = 50


def _parse_json(request):
    """Decode a JSON object body; raises ValueError on anything else."""
    data = json.loads(request.body or b'{}')
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    return data


def _text(data, key):
    """Return a stripped string field (empty when absent); non-strings are a validation error."""
    value = data.get(key)
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ValidationError({key: [f"{key} must be a string."]})
    return value.strip()


def _validation_response(error, message='Invalid profile data'):
    try:
        details = {k: v for k, v in error.message_dict.items()}
    except AttributeError:
        details = {'__all__': error.messages}
    return JsonResponse({'error': message, 'details': details}, status=400)


def _conflict_field(profile, exclude_pk=None):
    """Name the first unique profile field already used by another row, if any."""
    others = Profile.objects.all()
    if exclude_pk is not None:
        others = others.exclude(pk=exclude_pk)
    if others.filter(wallet_address=profile.wallet_address).exists():
        return 'walletAddress'
    if others.filter(username=profile.username).exists():
        return 'username'
    return None


def _apply_profile_fields(profile, data):
    for key, attr in PROFILE_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if key in TEXT_PROFILE_FIELDS and value is not None and not isinstance(value, str):
            raise ValidationError({attr: [f"{key} must be a string."]})
        if key in ('bio', 'avatarUrl', 'bannerUrl') and value == '':
            value = None
        if key == 'minimumTip':
            value = parse_sol_amount(value)
        setattr(profile, attr, value)


# ---------------- Pages ----------------

@ensure_csrf_cookie
def index(request):
    """
    Display the homepage with the newest creators.

    Returns:
        HttpResponse: Rendered homepage template
    """
    creators = Profile.objects.with_tip_stats()[:6]
    return render(request, 'soltip/index.html', {'creators': creators})


@ensure_csrf_cookie
def explore(request):
    """
    Display creators, optionally filtered by the ``q`` search parameter.

    Returns:
        HttpResponse: Rendered explore page with creator cards
    """
    query = request.GET.get('q', '').strip()
    creators = Profile.objects.search(query).with_tip_stats()
    return render(request, 'soltip/explore.html', {
        'creators': [c.to_card_dict() for c in creators],
        'query': query,
    })


@ensure_csrf_cookie
def create_profile_page(request):
    return render(request, 'soltip/create.html', {
        'platform_fee_account': settings.PLATFORM_FEE_ACCOUNT,
    })


@ensure_csrf_cookie
def profile_page(request, username):
    """
    Display a creator's profile with their recent activity.

    Args:
        request: HTTP request object
        username: Creator's unique username

    Returns:
        HttpResponse: Profile page, or 404 if the username does not exist
    """
    profile = get_object_or_404(Profile, username=username)
    donations = (
        Donation.objects.filter(recipient=profile)
        .select_related('donor')[:RECENT_DONATIONS_LIMIT]
    )
    minimum = profile.minimum_tip
    return render(request, 'soltip/profile.html', {
        'profile': profile,
        'donations': donations,
        'quick_options': [
            (sol_str(minimum), 'Preferred'),
            (sol_str(minimum * 2), 'Double'),
            (sol_str(minimum * 5), 'Premium'),
        ],
        'fee_percent': PLATFORM_FEE_PERCENT,
        'fee_fixed': sol_str(PLATFORM_FEE_FIXED),
    })


def about(request):
    return render(request, 'soltip/about.html')


def terms(request):
    return render(request, 'soltip/terms.html')


def privacy(request):
    return render(request, 'soltip/privacy.html')


# ---------------- Profile API ----------------

@require_http_methods(["GET", "POST"])
def profiles_api(request):
    """
    List/search creators (GET) or create a profile (POST).

    GET accepts ``q`` and returns creator cards newest first, with amounts
    in lamports. POST accepts walletAddress, username, displayName, bio,
    minimumTip, avatarUrl, bannerUrl and socialLinks.

    Returns:
        JsonResponse: Card list, or the created profile

    Errors:
        400 on invalid JSON or field validation, 409 if the wallet address
        or username is already taken.
    """
    if request.method == 'GET':
        query = request.GET.get('q', '').strip()
        creators = Profile.objects.search(query).with_tip_stats()
        return JsonResponse([c.to_card_dict() for c in creators], safe=False)

    try:
        data = _parse_json(request)
    except ValueError:
        return JsonResponse({'error': 'Invalid JSON data'}, status=400)

    try:
        profile = Profile(
            wallet_address=_text(data, 'walletAddress'),
            username=_text(data, 'username'),
        )
        _apply_profile_fields(profile, data)
        profile.full_clean(validate_unique=False)
    except ValidationError as e:
        return _validation_response(e)

    field = _conflict_field(profile)
    if field:
        return JsonResponse({'error': f'{field} is already taken'}, status=409)

    try:
        with transaction.atomic():
            profile.save()
    except IntegrityError:
        field = _conflict_field(profile) or 'profile'
        return JsonResponse({'error': f'{field} is already taken'}, status=409)
    except Exception:
        logger.exception("Error creating profile")
        return JsonResponse({'error': 'Failed to create profile'}, status=500)

    logger.info("Created profile @%s for %s", profile.username, profile.wallet_address)
    return JsonResponse(profile.to_dict(), status=201)


@require_http_methods(["GET", "PATCH"])
def profile_api(request, username):
    """
    Fetch (GET) or update (PATCH) a single profile.

    PATCH requires ``displayName`` and updates only the fields present in
    the body; the wallet address and username cannot be changed.

    Args:
        request: HTTP request object
        username: Username of the profile

    Returns:
        JsonResponse: The profile
    """
    if request.method == 'GET':
        try:
            profile = Profile.objects.get(username=username)
        except Profile.DoesNotExist:
            return JsonResponse({'error': 'Profile not found'}, status=404)
        return JsonResponse(profile.to_dict())

    try:
        data = _parse_json(request)
    except ValueError:
        return JsonResponse({'error': 'Invalid JSON data'}, status=400)

    if not data.get('displayName'):
        return JsonResponse({'error': 'Display name is required'}, status=400)

    try:
        profile = Profile.objects.get(username=username)
    except Profile.DoesNotExist:
        return JsonResponse({'error': 'Profile not found'}, status=404)

    try:
        _apply_profile_fields(profile, data)
        profile.full_clean(validate_unique=False)
    except ValidationError as e:
        return _validation_response(e)

    try:
        profile.save()
    except Exception:
        logger.exception("Error updating profile @%s", username)
        return JsonResponse({'error': 'Failed to update profile'}, status=500)

    return JsonResponse(profile.to_dict())


# ---------------- Donation API ----------------

def _resolve_recipient(username, data):
    """
    Find the profile a donation is addressed to.

    Direct wallet tips (``isDirectWalletTip`` with ``recipientWallet``) may
    target wallets that have no profile yet; those get an anonymous one.

    Returns:
        Profile or None
    """
    if data.get('isDirectWalletTip') and data.get('recipientWallet'):
        wallet = data['recipientWallet']
        validate_solana_address(wallet)
        profile, created = Profile.objects.get_or_create_anonymous(wallet)
        if created:
            logger.info("Created anonymous recipient profile @%s", profile.username)
        return profile
    return Profile.objects.filter(username=username).first()


@require_http_methods(["GET", "POST"])
def donations_api(request, username):
    """
    List a creator's donations (GET) or record a new one (POST).

    POST is called by the supporter's browser after the wallet submitted
    the tip transaction. It requires ``amount``, ``signature`` and
    ``walletAddress``; ``comment`` and ``nftMint`` are optional. The donor's
    profile is created on the fly for wallets that have none.

    When ``VERIFY_DONATION_SIGNATURES`` is enabled, the signature is checked
    on chain before the donation is stored; otherwise it is stored
    unverified and picked up later by the ``verify_donations`` command.

    Args:
        request: HTTP request object
        username: Recipient's username

    Returns:
        JsonResponse: Donations newest first, or the recorded donation
    """
    if request.method == 'GET':
        donations = (
            Donation.objects.filter(recipient__username=username)
            .select_related('donor')
        )
        return JsonResponse([d.to_dict() for d in donations], safe=False)

    try:
        data = _parse_json(request)
    except ValueError:
        return JsonResponse({'error': 'Invalid JSON data'}, status=400)

    amount = data.get('amount')
    signature = data.get('signature')
    wallet_address = data.get('walletAddress')
    if not amount or not signature or not wallet_address:
        return JsonResponse({'error': 'Missing required fields'}, status=400)

    nft_mint = data.get('nftMint') or None
    try:
        comment = _text(data, 'comment') or None
        validate_tip_amount(amount)
        validate_signature(signature)
        validate_solana_address(wallet_address)
        if nft_mint:
            validate_solana_address(nft_mint)
        if comment and len(comment) > 500:
            raise ValidationError("Comment must be less than 500 characters.")
        recipient = _resolve_recipient(username, data)
    except ValidationError as e:
        return JsonResponse({'error': e.messages[0]}, status=400)
    except IntegrityError:
        logger.warning("No free placeholder username for recipient %s", data.get('recipientWallet'))
        return JsonResponse({'error': 'Could not create a profile for this wallet'}, status=409)

    if recipient is None:
        return JsonResponse({'error': 'Profile not found'}, status=404)

    if Donation.objects.filter(signature=signature).exists():
        return JsonResponse({'error': 'signature is already recorded'}, status=409)

    amount = parse_sol_amount(amount)
    verified = False
    if settings.VERIFY_DONATION_SIGNATURES:
        try:
            expected = split_tip(amount).creator_lamports
            verified = verify_tip_signature(signature, recipient.wallet_address, expected)
        except SolanaRpcError as e:
            logger.warning("Could not verify donation %s: %s", signature, e)
            return JsonResponse({'error': 'Could not reach the Solana network. Please try again.'}, status=502)
        if not verified:
            return JsonResponse({'error': 'Transaction could not be verified'}, status=400)

    try:
        donor, _ = Profile.objects.get_or_create_anonymous(wallet_address)
    except IntegrityError:
        logger.warning("No free placeholder username for donor %s", wallet_address)
        return JsonResponse({'error': 'Could not create a profile for this wallet'}, status=409)

    try:
        with transaction.atomic():
            donation = Donation.objects.create(
                donor=donor,
                recipient=recipient,
                amount=amount,
                comment=comment,
                signature=signature,
                nft_mint=nft_mint,
                verified=verified,
            )
    except IntegrityError:
        if nft_mint and not Donation.objects.filter(signature=signature).exists():
            return JsonResponse({'error': 'nftMint is already recorded'}, status=409)
        return JsonResponse({'error': 'signature is already recorded'}, status=409)
    except Exception:
        logger.exception("Error creating donation for @%s", recipient.username)
        return JsonResponse({'error': 'Failed to create donation'}, status=500)

    logger.info(
        "Recorded %s SOL tip from %s to @%s (%s)",
        sol_str(amount), wallet_address, recipient.username, signature,
    )
    return JsonResponse(donation.to_dict(), status=201)


# ---------------- Transactions & fees ----------------

@require_POST
def tip_transaction_api(request):
    """
    Build the tip transaction for the supporter's wallet to sign.

    Body: ``walletAddress`` (donor), ``recipient`` (username or wallet
    address), ``amount`` in SOL, and optionally ``mintReceipt`` with
    ``comment`` for the commemorative NFT.

    Tips to a profile must meet its minimum tip; tips straight to a wallet
    without a profile only need to be positive.

    Returns:
        JsonResponse: Base64 transaction, blockhash, last valid block height,
        fee breakdown and the receipt mint address (or null)
    """
    try:
        data = _parse_json(request)
    except ValueError:
        return JsonResponse({'error': 'Invalid JSON data'}, status=400)

    wallet_address = data.get('walletAddress')
    try:
        recipient_input = _text(data, 'recipient')
    except ValidationError as e:
        return JsonResponse({'error': e.messages[0]}, status=400)
    amount = data.get('amount')
    if not wallet_address or not recipient_input or amount is None:
        return JsonResponse({'error': 'Missing required fields'}, status=400)

    try:
        validate_solana_address(wallet_address)
        validate_tip_amount(amount)
    except ValidationError as e:
        return JsonResponse({'error': e.messages[0]}, status=400)
    amount = parse_sol_amount(amount)

    profile = Profile.objects.filter(username=recipient_input).first()
    if profile is None:
        try:
            validate_solana_address(recipient_input)
        except ValidationError:
            return JsonResponse({'error': 'Profile not found'}, status=404)
        profile = Profile.objects.filter(wallet_address=recipient_input).first()
        recipient_wallet = recipient_input
    else:
        recipient_wallet = profile.wallet_address

    if profile is not None and amount < profile.minimum_tip:
        return JsonResponse(
            {'error': f'Minimum tip amount is {sol_str(profile.minimum_tip)} SOL'},
            status=400,
        )

    receipt = None
    if data.get('mintReceipt'):
        mint = Keypair()
        receipt = ReceiptRequest(
            mint=mint,
            name=settings.RECEIPT_NAME,
            symbol=settings.RECEIPT_SYMBOL,
            uri=settings.SITE_URL.rstrip('/') + reverse('receipt_metadata', args=[str(mint.pubkey())]),
        )

    try:
        tip = create_tip_transaction(
            get_client(),
            amount,
            Pubkey.from_string(wallet_address),
            Pubkey.from_string(recipient_wallet),
            receipt=receipt,
        )
    except SolanaRpcError as e:
        return JsonResponse({'error': str(e)}, status=502)
    except TransactionBuildError as e:
        return JsonResponse({'error': str(e)}, status=400)

    return JsonResponse(tip.to_dict())


@require_GET
def fees_api(request):
    """Fee breakdown for ``?amount=`` SOL."""
    try:
        amount = request.GET.get('amount')
        validate_tip_amount(amount)
    except ValidationError as e:
        return JsonResponse({'error': e.messages[0]}, status=400)

    breakdown = split_tip(parse_sol_amount(amount)).to_dict()
    breakdown.update({
        'amount': float(parse_sol_amount(amount)),
        'feePercent': PLATFORM_FEE_PERCENT,
        'feeFixed': float(PLATFORM_FEE_FIXED),
    })
    return JsonResponse(breakdown)


# ---------------- Uploads & receipts ----------------

@require_POST
def upload_api(request):
    """
    Proxy an image upload to the external upload service.

    Expects a multipart ``file`` field.

    Returns:
        JsonResponse: ``{"url": ...}`` of the stored image
    """
    upload = request.FILES.get('file')
    if upload is None:
        return JsonResponse({'error': 'No file provided'}, status=400)

    try:
        url = upload_image(upload)
    except UploadError as e:
        return JsonResponse({'error': e.message}, status=e.status)

    return JsonResponse({'url': url})


@require_GET
def receipt_metadata(request, mint):
    """Serve the off-chain metadata JSON referenced by a receipt token's URI."""
    donation = (
        Donation.objects.filter(nft_mint=mint)
        .select_related('donor', 'recipient')
        .first()
    )
    if donation is None:
        raise Http404("Receipt not found")
    return JsonResponse(donation.receipt_metadata())


# --- Error Handlers ---
def custom_page_not_found(request, exception):
    """
    Custom 404 handler: JSON for API routes, the app template elsewhere.

    Note: This will be used only when DEBUG=False.
    """
    if request.path.startswith('/api/'):
        return JsonResponse({'error': 'Not found'}, status=404)
    return render(request, 'soltip/404.html', status=404)
