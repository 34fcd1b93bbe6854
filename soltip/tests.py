from django.test import TestCase, Client, override_settings
from django.urls import reverse
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.core.files.uploadedfile import SimpleUploadedFile
from django.db import IntegrityError
from unittest.mock import patch, MagicMock

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import decode_transfer
from solders.transaction import Transaction

from .models import Donation, Profile, ProfileManager, ProfileQuerySet
from .templatetags.soltip_format import format_sol, short_address, to_sol
from .transactions import (
    TOKEN_METADATA_PROGRAM_ID,
    SolanaRpcError,
    build_metadata_instruction,
    build_tip_instructions,
    create_tip_transaction,
    explorer_url,
    find_metadata_address,
    ReceiptRequest,
    TransactionBuildError,
    sol_to_lamports,
    split_tip,
    verify_tip_signature,
)
from .uploads import UploadError, upload_image
from .validators import (
    validate_minimum_tip,
    validate_social_links,
    validate_solana_address,
    validate_tip_amount,
    validate_username,
)

import base64
import io
import json
from decimal import Decimal
from io import StringIO


def make_wallet():
    """Return a fresh base58 wallet address."""
    return str(Keypair().pubkey())


def make_signature():
    """Return a syntactically valid base58 transaction signature."""
    return str(Keypair().sign_message(b'tip'))


def make_image_bytes(fmt='PNG', size=(2, 2), color=(255, 0, 0)):
    """Return raw bytes of a tiny in-memory image for upload tests."""
    from PIL import Image
    bio = io.BytesIO()
    img = Image.new('RGB', size, color)
    img.save(bio, format=fmt)
    return bio.getvalue()


def mock_rpc_client(rent=1461600):
    """A stand-in for the solana-py Client answering blockhash and rent lookups."""
    client = MagicMock()
    client.get_latest_blockhash.return_value.value.blockhash = Hash.new_unique()
    client.get_latest_blockhash.return_value.value.last_valid_block_height = 1234
    client.get_minimum_balance_for_rent_exemption.return_value.value = rent
    return client


class BaseTestCase(TestCase):
    def setUp(self):
        """Create a client, a creator profile and a supporter wallet."""
        self.client = Client()
        self.creator = Profile.objects.create(
            wallet_address=make_wallet(),
            username='alice',
            display_name='Alice',
            bio='I make pixel art',
            minimum_tip=Decimal('0.1'),
        )
        self.supporter_wallet = make_wallet()

    def make_donation(self, amount='1', **kwargs):
        donor, _ = Profile.objects.get_or_create_anonymous(kwargs.pop('donor_wallet', self.supporter_wallet))
        return Donation.objects.create(
            donor=donor,
            recipient=kwargs.pop('recipient', self.creator),
            amount=Decimal(amount),
            signature=kwargs.pop('signature', make_signature()),
            **kwargs
        )


class ProfileModelTests(BaseTestCase):
    def test_profile_str(self):
        """__str__ on Profile shows display name and username."""
        self.assertEqual(str(self.creator), 'Alice (@alice)')

    def test_short_wallet(self):
        """short_wallet abbreviates the address to its first and last four characters."""
        wallet = self.creator.wallet_address
        self.assertEqual(self.creator.short_wallet(), f'{wallet[:4]}...{wallet[-4:]}')

    def test_get_or_create_anonymous_creates_placeholder(self):
        """A wallet without a profile gets an Anon placeholder named after the wallet."""
        wallet = make_wallet()
        profile, created = Profile.objects.get_or_create_anonymous(wallet)
        self.assertTrue(created)
        self.assertEqual(profile.username, wallet[:8])
        self.assertEqual(profile.display_name, f'Anon {wallet[:4]}')
        self.assertEqual(profile.minimum_tip, Decimal('0.1'))

    def test_get_or_create_anonymous_returns_existing(self):
        """An existing profile is returned unchanged."""
        profile, created = Profile.objects.get_or_create_anonymous(self.creator.wallet_address)
        self.assertFalse(created)
        self.assertEqual(profile.pk, self.creator.pk)

    def test_get_or_create_anonymous_lengthens_taken_username(self):
        """When wallet[:8] is taken as a username, a longer prefix is used."""
        wallet = make_wallet()
        Profile.objects.create(wallet_address=make_wallet(), username=wallet[:8], display_name='Taken')
        profile, created = Profile.objects.get_or_create_anonymous(wallet)
        self.assertTrue(created)
        self.assertEqual(profile.username, wallet[:12])

    def test_with_tip_stats_aggregates_received_donations(self):
        """with_tip_stats sums amounts and counts donations per recipient."""
        self.make_donation('1')
        self.make_donation('0.5')
        profile = Profile.objects.with_tip_stats().get(pk=self.creator.pk)
        self.assertEqual(profile.total_tips, Decimal('1.5'))
        self.assertEqual(profile.donation_count, 2)
        self.assertIsNotNone(profile.last_tip_at)

        card = profile.to_card_dict()
        self.assertEqual(card['totalTipsReceived'], 1_500_000_000)
        self.assertEqual(card['minTipAmount'], 100_000_000)
        self.assertEqual(card['donationCount'], 2)

    def test_card_dict_without_donations(self):
        """Profiles with no tips report zero totals and no last tip."""
        card = Profile.objects.with_tip_stats().get(pk=self.creator.pk).to_card_dict()
        self.assertEqual(card['totalTipsReceived'], 0)
        self.assertEqual(card['donationCount'], 0)
        self.assertIsNone(card['lastTipReceivedAt'])

    def test_search_matches_username_display_name_and_bio(self):
        """search() is case-insensitive over username, display name and bio."""
        self.assertIn(self.creator, Profile.objects.search('ALI'))
        self.assertIn(self.creator, Profile.objects.search('pixel'))
        self.assertNotIn(self.creator, Profile.objects.search('nothing-like-this'))

    def test_full_clean_rejects_long_bio(self):
        """Bios over 500 characters fail model validation."""
        self.creator.bio = 'x' * 501
        with self.assertRaises(ValidationError):
            self.creator.full_clean(validate_unique=False)

    def test_get_or_create_anonymous_no_free_username(self):
        """When every placeholder username is taken by other wallets, creation fails loudly."""
        wallet = make_wallet()
        for username in [wallet[:8], wallet[:12], wallet[:16], wallet[:20], wallet[-20:]]:
            Profile.objects.create(wallet_address=make_wallet(), username=username, display_name='Taken')
        with self.assertRaises(IntegrityError):
            Profile.objects.get_or_create_anonymous(wallet)
        self.assertFalse(Profile.objects.filter(wallet_address=wallet).exists())

    def test_get_or_create_anonymous_concurrent_insert(self):
        """If another request inserted the wallet first, that profile is returned."""
        with patch.object(ProfileQuerySet, 'first', side_effect=[None, self.creator]), \
                patch.object(ProfileManager, 'create', side_effect=IntegrityError('duplicate wallet')):
            profile, created = Profile.objects.get_or_create_anonymous(self.creator.wallet_address)
        self.assertFalse(created)
        self.assertEqual(profile.pk, self.creator.pk)


class DonationModelTests(BaseTestCase):
    def test_donation_str(self):
        """__str__ describes who tipped whom."""
        donation = self.make_donation('0.25')
        self.assertEqual(str(donation), f'{donation.donor.display_name} tipped 0.25 SOL to Alice')

    def test_to_dict_includes_donor(self):
        """to_dict exposes the donor summary and SOL amount."""
        donation = self.make_donation('0.25', comment='Great work')
        data = donation.to_dict()
        self.assertEqual(data['amount'], 0.25)
        self.assertEqual(data['comment'], 'Great work')
        self.assertFalse(data['verified'])
        self.assertEqual(data['donor']['walletAddress'], self.supporter_wallet)

    def test_receipt_metadata(self):
        """receipt_metadata follows the token metadata JSON layout."""
        donation = self.make_donation('2', nft_mint=make_wallet())
        meta = donation.receipt_metadata()
        self.assertEqual(meta['name'], 'SOLTIP Receipt')
        self.assertEqual(meta['symbol'], 'TIP')
        self.assertEqual(meta['description'], 'A 2 SOL tip to @alice')
        traits = {a['trait_type']: a['value'] for a in meta['attributes']}
        self.assertEqual(traits['Amount (SOL)'], '2')
        self.assertEqual(traits['To'], self.creator.wallet_address)
        self.assertEqual(traits['Signature'], donation.signature)
        self.assertIn(donation.signature, meta['external_url'])


class ValidatorsTests(TestCase):
    def test_validate_solana_address_valid(self):
        """A real public key passes validation."""
        validate_solana_address(make_wallet())

    def test_validate_solana_address_invalid(self):
        """Short, non-base58 and non-string values are rejected."""
        for value in ['abc', '0' * 44, 'O' * 40, None]:
            with self.assertRaises(ValidationError):
                validate_solana_address(value)

    def test_validate_username(self):
        """Usernames must be 3-20 URL-safe characters and not reserved."""
        validate_username('pixel_art-99')
        for bad in ['ab', 'a' * 21, 'has space', 'admin', 'Explore']:
            with self.assertRaises(ValidationError):
                validate_username(bad)

    def test_validate_minimum_tip_bounds(self):
        """Minimum tip must lie between 0.01 and 100 SOL."""
        validate_minimum_tip('0.01')
        validate_minimum_tip(100)
        for bad in ['0.001', '100.5', 'abc', True]:
            with self.assertRaises(ValidationError):
                validate_minimum_tip(bad)

    def test_validate_tip_amount(self):
        """Tips must be positive with at most 9 decimal places."""
        validate_tip_amount(0.5)
        validate_tip_amount('0.000000001')
        for bad in [0, -1, '0.0000000001', None]:
            with self.assertRaises(ValidationError):
                validate_tip_amount(bad)

    def test_validate_social_links(self):
        """Only known keys with empty or http(s) URL values are accepted."""
        validate_social_links(None)
        validate_social_links({'twitter': 'https://x.com/alice', 'github': ''})
        with self.assertRaises(ValidationError):
            validate_social_links({'myspace': 'https://myspace.com/alice'})
        with self.assertRaises(ValidationError):
            validate_social_links({'website': 'javascript:alert(1)'})
        with self.assertRaises(ValidationError):
            validate_social_links(['https://x.com'])

    def test_validate_tip_amount_upper_bound(self):
        """Amounts beyond what a donation can store are rejected."""
        validate_tip_amount('999999999')
        for bad in ['1e20', '1000000000', 10 ** 12]:
            with self.assertRaises(ValidationError):
                validate_tip_amount(bad)

    def test_limit_messages_match_inclusive_bounds(self):
        """Exactly 20 characters and exactly 100 SOL are allowed, and the messages say so."""
        validate_username('a' * 20)
        with self.assertRaisesMessage(ValidationError, 'at most 20 characters'):
            validate_username('a' * 21)
        with self.assertRaisesMessage(ValidationError, 'at most 100 SOL'):
            validate_minimum_tip('100.01')


class FeeTests(TestCase):
    def test_split_one_sol(self):
        """1 SOL sends 0.97 to the creator and 0.031 to the platform."""
        fees = split_tip(1)
        self.assertEqual(fees.creator_lamports, 970_000_000)
        self.assertEqual(fees.platform_fee_lamports, 31_000_000)
        self.assertEqual(fees.total_lamports, 1_001_000_000)

    def test_split_small_tip(self):
        """0.1 SOL sends 0.097 to the creator and 0.004 to the platform."""
        fees = split_tip('0.1')
        self.assertEqual(fees.creator_lamports, 97_000_000)
        self.assertEqual(fees.platform_fee_lamports, 4_000_000)

    def test_sol_to_lamports_rounds_down(self):
        """Fractions of a lamport are dropped."""
        self.assertEqual(sol_to_lamports(Decimal('0.0000000019')), 1)
        self.assertEqual(sol_to_lamports(0.1), 100_000_000)

    def test_explorer_url_cluster(self):
        """Non-mainnet clusters are appended as a query parameter."""
        with override_settings(SOLANA_CLUSTER='devnet'):
            self.assertEqual(explorer_url('tx', 'abc'), 'https://solscan.io/tx/abc?cluster=devnet')
        with override_settings(SOLANA_CLUSTER='mainnet-beta'):
            self.assertEqual(explorer_url('account', 'abc'), 'https://solscan.io/account/abc')


class TransactionBuilderTests(TestCase):
    def setUp(self):
        self.donor = Keypair().pubkey()
        self.creator = Keypair().pubkey()

    def test_tip_instructions_order_and_amounts(self):
        """The creator transfer comes first, the platform fee second."""
        instructions, fees = build_tip_instructions(self.donor, self.creator, Decimal('1'))
        self.assertEqual(len(instructions), 2)
        to_creator = decode_transfer(instructions[0])
        to_platform = decode_transfer(instructions[1])
        self.assertEqual(to_creator['to_pubkey'], self.creator)
        self.assertEqual(to_creator['lamports'], fees.creator_lamports)
        self.assertEqual(str(to_platform['to_pubkey']), '7pDCLJpmLRbrxoA25YSPh8eMNFvBiKnLNjMCambmdXvG')
        self.assertEqual(to_platform['lamports'], fees.platform_fee_lamports)

    def test_metadata_instruction_layout(self):
        """CreateMetadataAccountV3 data starts with its discriminator and borsh strings."""
        mint = Keypair().pubkey()
        ix = build_metadata_instruction(mint, self.donor, self.donor, self.donor, 'Receipt', 'TIP', 'https://x/y')
        data = bytes(ix.data)
        self.assertEqual(ix.program_id, TOKEN_METADATA_PROGRAM_ID)
        self.assertEqual(data[0], 33)
        self.assertEqual(int.from_bytes(data[1:5], 'little'), len('Receipt'))
        self.assertEqual(data[5:12], b'Receipt')
        self.assertEqual(ix.accounts[0].pubkey, find_metadata_address(mint))

    def test_metadata_instruction_rejects_long_uri(self):
        """URIs longer than 200 bytes cannot be stored on chain."""
        with self.assertRaises(TransactionBuildError):
            build_metadata_instruction(
                Keypair().pubkey(), self.donor, self.donor, self.donor, 'R', 'T', 'https://' + 'x' * 200,
            )

    def test_create_tip_transaction_without_receipt(self):
        """The wire transaction carries the two transfers with the donor as fee payer."""
        tip = create_tip_transaction(mock_rpc_client(), Decimal('1'), self.donor, self.creator)
        tx = Transaction.from_bytes(base64.b64decode(tip.transaction))
        self.assertEqual(len(tx.message.instructions), 2)
        self.assertEqual(tx.message.account_keys[0], self.donor)
        self.assertIsNone(tip.mint)
        self.assertEqual(tip.last_valid_block_height, 1234)
        self.assertEqual(tip.to_dict()['fees']['creatorLamports'], 970_000_000)

    def test_create_tip_transaction_with_receipt(self):
        """A receipt adds the mint instructions and is signed by the mint keypair."""
        mint = Keypair()
        receipt = ReceiptRequest(mint=mint, name='SOLTIP Receipt', symbol='TIP', uri='https://example.com/r.json')
        tip = create_tip_transaction(mock_rpc_client(), Decimal('1'), self.donor, self.creator, receipt=receipt)
        tx = Transaction.from_bytes(base64.b64decode(tip.transaction))
        self.assertEqual(len(tx.message.instructions), 7)
        self.assertEqual(tip.mint, str(mint.pubkey()))
        self.assertIn(mint.pubkey(), tx.message.account_keys)
        # Donor signature still missing, mint signature present
        signers = tx.message.account_keys[:tx.message.header.num_required_signatures]
        mint_sig = tx.signatures[signers.index(mint.pubkey())]
        self.assertTrue(mint_sig.verify(mint.pubkey(), bytes(tx.message)))

    def test_create_tip_transaction_rpc_failure(self):
        """RPC errors surface as SolanaRpcError."""
        client = MagicMock()
        client.get_latest_blockhash.side_effect = Exception('connection refused')
        with self.assertRaises(SolanaRpcError):
            create_tip_transaction(client, Decimal('1'), self.donor, self.creator)


class VerifySignatureTests(TestCase):
    def _rpc_response(self, result):
        response = MagicMock()
        response.json.return_value = {'jsonrpc': '2.0', 'id': 1, 'result': result}
        return response

    def _tx_result(self, recipient, pre, post, err=None):
        return {
            'meta': {'err': err, 'preBalances': [5, pre], 'postBalances': [1, post]},
            'transaction': {'message': {'accountKeys': ['payer', recipient]}},
        }

    @patch('soltip.transactions.requests.post')
    def test_verify_success(self, mock_post):
        """A confirmed transaction crediting enough lamports verifies."""
        mock_post.return_value = self._rpc_response(self._tx_result('creator', 0, 970))
        self.assertTrue(verify_tip_signature('sig', 'creator', 970))
        payload = mock_post.call_args.kwargs['json']
        self.assertEqual(payload['method'], 'getTransaction')

    @patch('soltip.transactions.requests.post')
    def test_verify_insufficient_credit(self, mock_post):
        """Crediting less than expected does not verify."""
        mock_post.return_value = self._rpc_response(self._tx_result('creator', 0, 100))
        self.assertFalse(verify_tip_signature('sig', 'creator', 970))

    @patch('soltip.transactions.requests.post')
    def test_verify_failed_or_missing_transaction(self, mock_post):
        """Failed, unknown or unrelated transactions do not verify."""
        mock_post.return_value = self._rpc_response(self._tx_result('creator', 0, 970, err={'InstructionError': []}))
        self.assertFalse(verify_tip_signature('sig', 'creator', 970))
        mock_post.return_value = self._rpc_response(None)
        self.assertFalse(verify_tip_signature('sig', 'creator', 970))
        mock_post.return_value = self._rpc_response(self._tx_result('someone-else', 0, 970))
        self.assertFalse(verify_tip_signature('sig', 'creator', 970))

    @patch('soltip.transactions.requests.post')
    def test_verify_rpc_error(self, mock_post):
        """JSON-RPC errors raise SolanaRpcError."""
        mock_post.return_value.json.return_value = {'error': {'code': -32000, 'message': 'boom'}}
        with self.assertRaises(SolanaRpcError):
            verify_tip_signature('sig', 'creator', 1)


class UploadTests(TestCase):
    def _upload(self, name='avatar.png', content_type='image/png', content=None):
        return SimpleUploadedFile(name, content or make_image_bytes('PNG'), content_type=content_type)

    @override_settings(UPLOAD_ENDPOINT_URL='https://uploads.example.com', UPLOAD_API_KEY='key')
    @patch('soltip.uploads.requests.post')
    def test_upload_success(self, mock_post):
        """Images are forwarded with the API key and the returned URL is used."""
        mock_post.return_value.json.return_value = {'data': {'url': 'https://cdn.example.com/a.png'}}
        self.assertEqual(upload_image(self._upload()), 'https://cdn.example.com/a.png')
        kwargs = mock_post.call_args.kwargs
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer key')
        self.assertEqual(kwargs['files']['file'][0], 'avatar.png')

    def test_upload_rejects_type(self):
        """Non-image content types are rejected with 400."""
        with self.assertRaises(UploadError) as ctx:
            upload_image(self._upload('a.txt', 'text/plain', b'hello'))
        self.assertEqual(ctx.exception.status, 400)

    @override_settings(UPLOAD_MAX_BYTES=10, UPLOAD_ENDPOINT_URL='https://uploads.example.com')
    def test_upload_rejects_size(self):
        """Files over the size limit are rejected with 400."""
        with self.assertRaises(UploadError) as ctx:
            upload_image(self._upload())
        self.assertEqual(ctx.exception.status, 400)

    @override_settings(UPLOAD_ENDPOINT_URL='')
    def test_upload_not_configured(self):
        """Without an endpoint the upload is refused with 503."""
        with self.assertRaises(UploadError) as ctx:
            upload_image(self._upload())
        self.assertEqual(ctx.exception.status, 503)

    @override_settings(UPLOAD_ENDPOINT_URL='https://uploads.example.com')
    @patch('soltip.uploads.requests.post')
    def test_upload_response_without_url(self, mock_post):
        """An upstream response without a URL is reported as 502."""
        mock_post.return_value.json.return_value = {'ok': True}
        with self.assertRaises(UploadError) as ctx:
            upload_image(self._upload())
        self.assertEqual(ctx.exception.status, 502)

    def test_upload_api_without_file(self):
        """POST /api/upload/ without a file returns 400."""
        resp = self.client.post(reverse('upload_api'))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()['error'], 'No file provided')

    @override_settings(UPLOAD_ENDPOINT_URL='https://uploads.example.com')
    @patch('soltip.uploads.requests.post')
    def test_upload_api_success(self, mock_post):
        """POST /api/upload/ returns the stored image URL."""
        mock_post.return_value.json.return_value = {'url': 'https://cdn.example.com/b.png'}
        resp = self.client.post(reverse('upload_api'), data={'file': self._upload()})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {'url': 'https://cdn.example.com/b.png'})


class ProfileApiTests(BaseTestCase):
    def _post(self, payload):
        return self.client.post(reverse('profiles_api'), data=json.dumps(payload), content_type='application/json')

    def test_create_profile(self):
        """A valid POST creates the profile and returns 201."""
        wallet = make_wallet()
        resp = self._post({
            'walletAddress': wallet,
            'username': 'bob_builds',
            'displayName': 'Bob',
            'minimumTip': 0.5,
            'socialLinks': {'github': 'https://github.com/bob'},
        })
        self.assertEqual(resp.status_code, 201)
        data = resp.json()
        self.assertEqual(data['username'], 'bob_builds')
        self.assertEqual(data['minimumTip'], 0.5)
        self.assertTrue(Profile.objects.filter(wallet_address=wallet).exists())

    def test_create_profile_validation_error(self):
        """Invalid fields are reported with 400 and per-field details."""
        resp = self._post({'walletAddress': 'nope', 'username': 'ab', 'displayName': 'B'})
        self.assertEqual(resp.status_code, 400)
        details = resp.json()['details']
        self.assertIn('wallet_address', details)
        self.assertIn('username', details)
        self.assertIn('display_name', details)

    def test_create_profile_invalid_json(self):
        """Malformed JSON bodies return 400."""
        resp = self.client.post(reverse('profiles_api'), data='{not json', content_type='application/json')
        self.assertEqual(resp.status_code, 400)

    def test_create_profile_conflicts(self):
        """Taken usernames and wallet addresses return 409."""
        resp = self._post({'walletAddress': make_wallet(), 'username': 'alice', 'displayName': 'Other'})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()['error'], 'username is already taken')

        resp = self._post({'walletAddress': self.creator.wallet_address, 'username': 'other', 'displayName': 'Other'})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()['error'], 'walletAddress is already taken')

    def test_search_profiles(self):
        """GET lists creator cards filtered by q."""
        Profile.objects.create(wallet_address=make_wallet(), username='zed', display_name='Zed')
        resp = self.client.get(reverse('profiles_api'), {'q': 'pixel'})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([c['username'] for c in resp.json()], ['alice'])

    def test_get_profile(self):
        """GET returns the profile or 404."""
        resp = self.client.get(reverse('profile_api', args=['alice']))
        self.assertEqual(resp.json()['walletAddress'], self.creator.wallet_address)
        resp = self.client.get(reverse('profile_api', args=['ghost']))
        self.assertEqual(resp.status_code, 404)

    def test_patch_profile(self):
        """PATCH updates the given fields and requires displayName."""
        url = reverse('profile_api', args=['alice'])
        resp = self.client.patch(url, data=json.dumps({'bio': 'new'}), content_type='application/json')
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()['error'], 'Display name is required')

        resp = self.client.patch(
            url,
            data=json.dumps({'displayName': 'Alice B', 'bio': '', 'minimumTip': '0.25'}),
            content_type='application/json',
        )
        self.assertEqual(resp.status_code, 200)
        self.creator.refresh_from_db()
        self.assertEqual(self.creator.display_name, 'Alice B')
        self.assertIsNone(self.creator.bio)
        self.assertEqual(self.creator.minimum_tip, Decimal('0.25'))

    def test_patch_profile_invalid_minimum(self):
        """An out-of-range minimum tip is rejected."""
        resp = self.client.patch(
            reverse('profile_api', args=['alice']),
            data=json.dumps({'displayName': 'Alice', 'minimumTip': 500}),
            content_type='application/json',
        )
        self.assertEqual(resp.status_code, 400)

    def test_patch_unknown_profile(self):
        resp = self.client.patch(
            reverse('profile_api', args=['ghost']),
            data=json.dumps({'displayName': 'Ghost'}),
            content_type='application/json',
        )
        self.assertEqual(resp.status_code, 404)

    def test_method_not_allowed(self):
        """Unsupported methods return 405."""
        resp = self.client.delete(reverse('profile_api', args=['alice']))
        self.assertEqual(resp.status_code, 405)

    def test_create_profile_non_string_fields(self):
        """Non-string username or wallet values are validation errors, not crashes."""
        resp = self._post({'walletAddress': make_wallet(), 'username': 12345, 'displayName': 'Bob'})
        self.assertEqual(resp.status_code, 400)
        self.assertIn('username', resp.json()['details'])

        resp = self._post({'walletAddress': ['x'], 'username': 'bob_builds', 'displayName': 'Bob'})
        self.assertEqual(resp.status_code, 400)

        resp = self._post({'walletAddress': make_wallet(), 'username': 'bob_builds', 'displayName': 'Bob', 'bio': 7})
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(Profile.objects.filter(username='bob_builds').exists())

    def test_patch_non_string_display_name(self):
        resp = self.client.patch(
            reverse('profile_api', args=['alice']),
            data=json.dumps({'displayName': 123}),
            content_type='application/json',
        )
        self.assertEqual(resp.status_code, 400)


class DonationApiTests(BaseTestCase):
    def _post(self, payload, username='alice'):
        return self.client.post(
            reverse('donations_api', args=[username]),
            data=json.dumps(payload),
            content_type='application/json',
        )

    def _payload(self, **overrides):
        payload = {
            'amount': 0.5,
            'signature': make_signature(),
            'walletAddress': self.supporter_wallet,
            'comment': 'Love your work',
        }
        payload.update(overrides)
        return payload

    def test_record_donation_creates_anonymous_donor(self):
        """Recording a tip creates a placeholder profile for an unknown donor."""
        resp = self._post(self._payload())
        self.assertEqual(resp.status_code, 201)
        data = resp.json()
        self.assertEqual(data['amount'], 0.5)
        self.assertEqual(data['donor']['walletAddress'], self.supporter_wallet)
        self.assertFalse(data['verified'])
        donor = Profile.objects.get(wallet_address=self.supporter_wallet)
        self.assertTrue(donor.display_name.startswith('Anon '))

    def test_missing_fields(self):
        resp = self._post({'amount': 1})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()['error'], 'Missing required fields')

    def test_invalid_amount_and_wallet(self):
        """Invalid amounts and wallet addresses are rejected with 400."""
        self.assertEqual(self._post(self._payload(amount=-1)).status_code, 400)
        self.assertEqual(self._post(self._payload(walletAddress='bad')).status_code, 400)

    def test_unknown_recipient(self):
        resp = self._post(self._payload(), username='ghost')
        self.assertEqual(resp.status_code, 404)

    def test_duplicate_signature(self):
        """A signature can only be recorded once."""
        payload = self._payload()
        self.assertEqual(self._post(payload).status_code, 201)
        resp = self._post(payload)
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(Donation.objects.count(), 1)

    def test_direct_wallet_tip_creates_recipient(self):
        """Direct wallet tips create an anonymous recipient profile."""
        wallet = make_wallet()
        resp = self._post(
            self._payload(isDirectWalletTip=True, recipientWallet=wallet),
            username=wallet[:8],
        )
        self.assertEqual(resp.status_code, 201)
        recipient = Profile.objects.get(wallet_address=wallet)
        self.assertEqual(recipient.received_donations.count(), 1)

    def test_list_donations(self):
        """GET returns the creator's donations newest first."""
        first = self.make_donation('1')
        second = self.make_donation('2')
        resp = self.client.get(reverse('donations_api', args=['alice']))
        self.assertEqual([d['id'] for d in resp.json()], [second.id, first.id])

    @override_settings(VERIFY_DONATION_SIGNATURES=True)
    @patch('soltip.views.verify_tip_signature', return_value=True)
    def test_verified_donation(self, mock_verify):
        """With verification on, a confirmed signature is stored as verified."""
        payload = self._payload(amount=1)
        resp = self._post(payload)
        self.assertEqual(resp.status_code, 201)
        self.assertTrue(resp.json()['verified'])
        mock_verify.assert_called_once_with(payload['signature'], self.creator.wallet_address, 970_000_000)

    @override_settings(VERIFY_DONATION_SIGNATURES=True)
    @patch('soltip.views.verify_tip_signature', return_value=False)
    def test_unverified_donation_rejected(self, _verify):
        resp = self._post(self._payload())
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(Donation.objects.exists())

    @override_settings(VERIFY_DONATION_SIGNATURES=True)
    @patch('soltip.views.verify_tip_signature', side_effect=SolanaRpcError('down'))
    def test_verification_rpc_failure(self, _verify):
        resp = self._post(self._payload())
        self.assertEqual(resp.status_code, 502)

    def test_non_string_comment(self):
        resp = self._post(self._payload(comment=5))
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(Donation.objects.exists())

    def test_amount_too_large(self):
        """Amounts that cannot be stored are rejected with 400."""
        resp = self._post(self._payload(amount='1e20'))
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(Donation.objects.exists())

    def test_donor_without_free_username(self):
        """A donor whose placeholder usernames are all taken gets a clear 409."""
        wallet = self.supporter_wallet
        for username in [wallet[:8], wallet[:12], wallet[:16], wallet[:20], wallet[-20:]]:
            Profile.objects.create(wallet_address=make_wallet(), username=username, display_name='Taken')
        resp = self._post(self._payload())
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()['error'], 'Could not create a profile for this wallet')
        self.assertFalse(Donation.objects.exists())

    def test_duplicate_receipt_mint(self):
        """Reusing a receipt mint is reported as such."""
        mint = make_wallet()
        self.assertEqual(self._post(self._payload(nftMint=mint)).status_code, 201)
        resp = self._post(self._payload(nftMint=mint))
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()['error'], 'nftMint is already recorded')


class TipTransactionApiTests(BaseTestCase):
    def _post(self, payload):
        return self.client.post(
            reverse('tip_transaction_api'),
            data=json.dumps(payload),
            content_type='application/json',
        )

    @patch('soltip.views.get_client')
    def test_build_tip_transaction(self, mock_get_client):
        """The endpoint returns a base64 transaction and the fee breakdown."""
        mock_get_client.return_value = mock_rpc_client()
        resp = self._post({'walletAddress': self.supporter_wallet, 'recipient': 'alice', 'amount': 1})
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertIsNone(data['mint'])
        self.assertEqual(data['fees']['creatorLamports'], 970_000_000)
        tx = Transaction.from_bytes(base64.b64decode(data['transaction']))
        self.assertEqual(tx.message.account_keys[0], Pubkey.from_string(self.supporter_wallet))

    @patch('soltip.views.get_client')
    def test_build_tip_transaction_with_receipt(self, mock_get_client):
        """Requesting a receipt returns the new mint address."""
        mock_get_client.return_value = mock_rpc_client()
        resp = self._post({
            'walletAddress': self.supporter_wallet,
            'recipient': 'alice',
            'amount': 1,
            'mintReceipt': True,
        })
        self.assertEqual(resp.status_code, 200)
        validate_solana_address(resp.json()['mint'])

    def test_below_minimum_tip(self):
        resp = self._post({'walletAddress': self.supporter_wallet, 'recipient': 'alice', 'amount': 0.05})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()['error'], 'Minimum tip amount is 0.1 SOL')

    @patch('soltip.views.get_client')
    def test_tip_to_wallet_without_profile(self, mock_get_client):
        """Tips can go straight to a wallet that has no profile."""
        mock_get_client.return_value = mock_rpc_client()
        resp = self._post({'walletAddress': self.supporter_wallet, 'recipient': make_wallet(), 'amount': 0.01})
        self.assertEqual(resp.status_code, 200)

    def test_unknown_recipient(self):
        resp = self._post({'walletAddress': self.supporter_wallet, 'recipient': 'ghost', 'amount': 1})
        self.assertEqual(resp.status_code, 404)

    @patch('soltip.views.get_client')
    def test_rpc_unavailable(self, mock_get_client):
        """RPC failures are reported as 502."""
        client = MagicMock()
        client.get_latest_blockhash.side_effect = Exception('timeout')
        mock_get_client.return_value = client
        resp = self._post({'walletAddress': self.supporter_wallet, 'recipient': 'alice', 'amount': 1})
        self.assertEqual(resp.status_code, 502)

    def test_fees_api(self):
        """GET /api/fees/ returns the split for an amount."""
        resp = self.client.get(reverse('fees_api'), {'amount': '1'})
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data['creatorLamports'], 970_000_000)
        self.assertEqual(data['platformFeeLamports'], 31_000_000)
        self.assertEqual(data['feePercent'], 3)
        self.assertEqual(self.client.get(reverse('fees_api'), {'amount': '0'}).status_code, 400)

    def test_amount_too_large(self):
        """Amounts beyond the lamport range are rejected before building."""
        resp = self._post({'walletAddress': self.supporter_wallet, 'recipient': 'alice', 'amount': '1e20'})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.client.get(reverse('fees_api'), {'amount': '1e20'}).status_code, 400)

    def test_non_string_recipient(self):
        resp = self._post({'walletAddress': self.supporter_wallet, 'recipient': 7, 'amount': 1})
        self.assertEqual(resp.status_code, 400)


class ReceiptMetadataTests(BaseTestCase):
    def test_receipt_metadata_view(self):
        """Receipt metadata is served for a known mint."""
        mint = make_wallet()
        self.make_donation('1', nft_mint=mint)
        resp = self.client.get(reverse('receipt_metadata', args=[mint]))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()['symbol'], 'TIP')

    def test_receipt_metadata_unknown_mint(self):
        resp = self.client.get(reverse('receipt_metadata', args=[make_wallet()]))
        self.assertEqual(resp.status_code, 404)


class PageTests(BaseTestCase):
    def test_index(self):
        """GET / renders the homepage with creators."""
        resp = self.client.get(reverse('index'))
        self.assertEqual(resp.status_code, 200)
        self.assertContains(resp, 'Alice')

    def test_explore_search(self):
        """The explore page filters creators by q."""
        resp = self.client.get(reverse('explore'), {'q': 'nobody-matches'})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.context['creators'], [])

    def test_profile_page(self):
        """The profile page lists donations and quick tip options."""
        self.make_donation('1', comment='Thanks!')
        resp = self.client.get(reverse('profile_page', args=['alice']))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(
            resp.context['quick_options'],
            [('0.1', 'Preferred'), ('0.2', 'Double'), ('0.5', 'Premium')],
        )
        self.assertContains(resp, 'Thanks!')

    def test_profile_page_not_found(self):
        resp = self.client.get(reverse('profile_page', args=['ghost']))
        self.assertEqual(resp.status_code, 404)

    def test_static_pages(self):
        for name in ['about', 'terms', 'privacy', 'create_profile']:
            self.assertEqual(self.client.get(reverse(name)).status_code, 200)

    def test_api_not_found_is_json(self):
        """Unknown API paths return a JSON 404."""
        resp = self.client.get('/api/does/not/exist/')
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {'error': 'Not found'})

    def test_explore_offers_quick_and_direct_tips(self):
        """Creator cards carry a quick tip form and the page offers tipping any wallet."""
        resp = self.client.get(reverse('explore'))
        self.assertContains(resp, 'class="quick-tip"')
        self.assertContains(resp, 'name="recipient" value="alice"')
        self.assertContains(resp, 'data-direct="true"')

    def test_pages_set_csrf_cookie(self):
        """Pages that post to the API hand out the CSRF cookie."""
        for url in [reverse('index'), reverse('explore'), reverse('create_profile'), reverse('profile_page', args=['alice'])]:
            client = Client()
            client.get(url)
            self.assertIn('csrftoken', client.cookies, url)


class CsrfTests(BaseTestCase):
    def setUp(self):
        super().setUp()
        self.client = Client(enforce_csrf_checks=True)

    def test_api_post_without_token_is_rejected(self):
        resp = self.client.post(
            reverse('profiles_api'),
            data=json.dumps({'walletAddress': make_wallet(), 'username': 'bob_builds', 'displayName': 'Bob'}),
            content_type='application/json',
        )
        self.assertEqual(resp.status_code, 403)

    def test_profile_create_with_cookie_token(self):
        """The token from the create page cookie, sent as X-CSRFToken, is accepted."""
        self.client.get(reverse('create_profile'))
        token = self.client.cookies['csrftoken'].value
        resp = self.client.post(
            reverse('profiles_api'),
            data=json.dumps({'walletAddress': make_wallet(), 'username': 'bob_builds', 'displayName': 'Bob'}),
            content_type='application/json',
            HTTP_X_CSRFTOKEN=token,
        )
        self.assertEqual(resp.status_code, 201)

    def test_donation_with_cookie_token(self):
        """The profile page's cookie lets the tip form record a donation."""
        self.client.get(reverse('profile_page', args=['alice']))
        token = self.client.cookies['csrftoken'].value
        resp = self.client.post(
            reverse('donations_api', args=['alice']),
            data=json.dumps({'amount': 0.5, 'signature': make_signature(), 'walletAddress': self.supporter_wallet}),
            content_type='application/json',
            HTTP_X_CSRFTOKEN=token,
        )
        self.assertEqual(resp.status_code, 201)


class TemplateFilterTests(TestCase):
    def test_format_sol(self):
        self.assertEqual(format_sol(1_500_000_000), '1.50 SOL')
        self.assertEqual(format_sol(1_234_500_000_000), '1,234.50 SOL')
        self.assertEqual(format_sol(None), '')

    def test_short_address(self):
        self.assertEqual(short_address('ABCDEFGHIJKL'), 'ABCD...IJKL')
        self.assertEqual(short_address('short'), 'short')

    def test_to_sol(self):
        self.assertEqual(to_sol(100_000_000), '0.1')
        self.assertEqual(to_sol(2_000_000_000), '2')
        self.assertEqual(to_sol('abc'), '')


class VerifyDonationsCommandTests(BaseTestCase):
    @patch('soltip.management.commands.verify_donations.verify_tip_signature')
    def test_marks_confirmed_donations(self, mock_verify):
        """Confirmed donations are marked verified, others left alone."""
        confirmed = self.make_donation('1')
        pending = self.make_donation('0.5')
        mock_verify.side_effect = lambda sig, wallet, expected: sig == confirmed.signature

        out = StringIO()
        call_command('verify_donations', stdout=out)

        confirmed.refresh_from_db()
        pending.refresh_from_db()
        self.assertTrue(confirmed.verified)
        self.assertFalse(pending.verified)
        self.assertIn('Verified 1 donation(s); 1 unconfirmed, 0 failed', out.getvalue())

    @patch('soltip.management.commands.verify_donations.verify_tip_signature', side_effect=SolanaRpcError('down'))
    def test_rpc_failures_counted(self, _verify):
        self.make_donation('1')
        out = StringIO()
        call_command('verify_donations', stdout=out)
        self.assertIn('0 unconfirmed, 1 failed', out.getvalue())

    @patch('soltip.management.commands.verify_donations.verify_tip_signature')
    def test_stale_donations_do_not_block_newer_ones(self, mock_verify):
        """Donations that never confirm rotate behind ones not yet checked."""
        stale = [self.make_donation('1'), self.make_donation('1')]
        fresh = self.make_donation('1')
        mock_verify.side_effect = lambda sig, wallet, expected: sig == fresh.signature

        call_command('verify_donations', '--limit', '2', stdout=StringIO())
        fresh.refresh_from_db()
        self.assertFalse(fresh.verified)
        for donation in stale:
            donation.refresh_from_db()
            self.assertIsNotNone(donation.last_checked_at)

        call_command('verify_donations', '--limit', '2', stdout=StringIO())
        fresh.refresh_from_db()
        self.assertTrue(fresh.verified)
        self.assertIsNotNone(fresh.last_checked_at)


class AdminTests(BaseTestCase):
    def test_wallet_address_read_only_once_set(self):
        """Existing profiles cannot have their wallet address edited in the admin."""
        from django.contrib import admin
        model_admin = admin.site._registry[Profile]
        self.assertEqual(model_admin.get_readonly_fields(None, self.creator), ('wallet_address',))
        self.assertEqual(model_admin.get_readonly_fields(None, None), ())
