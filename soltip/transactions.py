"""
SOLTIP Transactions

This module builds the Solana transactions behind a tip and checks them
once they have landed:
- Platform fee calculation and the lamport split between creator and platform
- Tip transaction assembly (creator transfer + platform fee transfer)
- Optional commemorative NFT receipt (mint account, metadata account, mint of one token)
- Signature verification against the chain through JSON-RPC

Transactions are built server-side with the donor as fee payer and returned
as base64 wire bytes; the donor's wallet adds its signature and submits.
When a receipt is included, the freshly generated mint keypair signs here,
so the wallet only has to provide the remaining signature.
"""

import base64
import logging
import struct
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR

import requests
from django.conf import settings
from solana.rpc.api import Client
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import ID as SYS_PROGRAM_ID
from solders.system_program import CreateAccountParams, TransferParams, create_account, transfer
from solders.transaction import Transaction
from spl.token.constants import MINT_LEN, TOKEN_PROGRAM_ID
from spl.token.instructions import (
    InitializeMintParams,
    MintToParams,
    create_associated_token_account,
    get_associated_token_address,
    initialize_mint,
    mint_to,
)

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
PLATFORM_FEE_PERCENT = 3
PLATFORM_FEE_FIXED = Decimal('0.001')  # SOL

TOKEN_METADATA_PROGRAM_ID = Pubkey.from_string('metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s')
CREATE_METADATA_ACCOUNT_V3 = 33

# Metaplex limits for DataV2 strings, in bytes
MAX_NAME_LENGTH = 32
MAX_SYMBOL_LENGTH = 10
MAX_URI_LENGTH = 200


class TransactionBuildError(Exception):
    """The requested transaction cannot be built from the given input."""


class SolanaRpcError(Exception):
    """The Solana RPC endpoint could not be reached or returned an error."""


def _to_decimal(amount):
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def sol_to_lamports(amount):
    """
    Convert SOL to lamports, rounding down to a whole lamport.

    Args:
        amount: SOL as Decimal, int, float or numeric string

    Returns:
        int: Number of lamports
    """
    lamports = _to_decimal(amount) * LAMPORTS_PER_SOL
    return int(lamports.to_integral_value(rounding=ROUND_FLOOR))


def lamports_to_sol(lamports):
    return Decimal(lamports) / LAMPORTS_PER_SOL


def sol_str(amount):
    """Render a SOL Decimal without exponent or trailing zeros (``Decimal('100.0')`` -> ``'100'``)."""
    return format(_to_decimal(amount).normalize(), 'f')


def calculate_platform_fee(amount):
    """
    Platform fee for a tip: a percentage of the tip plus a fixed amount.

    Args:
        amount: Tip amount in SOL

    Returns:
        Decimal: Fee in SOL
    """
    return _to_decimal(amount) * PLATFORM_FEE_PERCENT / 100 + PLATFORM_FEE_FIXED


def explorer_url(kind, value):
    """
    Build a Solscan link for an account or transaction.

    Args:
        kind: ``'account'`` or ``'tx'``
        value: Address or signature
    """
    url = f"https://solscan.io/{kind}/{value}"
    if settings.SOLANA_CLUSTER not in ('mainnet', 'mainnet-beta'):
        url += f"?cluster={settings.SOLANA_CLUSTER}"
    return url


def get_platform_fee_account():
    return Pubkey.from_string(settings.PLATFORM_FEE_ACCOUNT)


def get_client():
    """Return a solana-py RPC client for the configured endpoint."""
    return Client(settings.SOLANA_RPC_URL, timeout=settings.SOLANA_RPC_TIMEOUT)


@dataclass(frozen=True)
class FeeBreakdown:
    """How a tip is divided between the creator and the platform, in lamports."""
    creator_lamports: int
    platform_fee_lamports: int

    @property
    def total_lamports(self):
        return self.creator_lamports + self.platform_fee_lamports

    def to_dict(self):
        return {
            'creatorAmount': float(lamports_to_sol(self.creator_lamports)),
            'platformFee': float(lamports_to_sol(self.platform_fee_lamports)),
            'total': float(lamports_to_sol(self.total_lamports)),
            'creatorLamports': self.creator_lamports,
            'platformFeeLamports': self.platform_fee_lamports,
            'totalLamports': self.total_lamports,
        }


def split_tip(amount):
    """
    Divide a tip between creator and platform.

    Only the percentage part of the fee comes out of the tip; the fixed part
    is charged on top. A 1 SOL tip sends 0.97 SOL to the creator and
    0.031 SOL to the platform, for 1.001 SOL in total.

    Args:
        amount: Tip amount in SOL

    Returns:
        FeeBreakdown: Lamports for each transfer
    """
    amount = _to_decimal(amount)
    platform_fee = calculate_platform_fee(amount)
    creator_amount = amount - (platform_fee - PLATFORM_FEE_FIXED)
    return FeeBreakdown(
        creator_lamports=sol_to_lamports(creator_amount),
        platform_fee_lamports=sol_to_lamports(platform_fee),
    )


def build_tip_instructions(from_pubkey, to_pubkey, amount):
    """
    Transfer instructions for a tip: creator first, platform fee second.

    Returns:
        tuple: (list of Instruction, FeeBreakdown)
    """
    fees = split_tip(amount)
    instructions = [
        transfer(TransferParams(
            from_pubkey=from_pubkey,
            to_pubkey=to_pubkey,
            lamports=fees.creator_lamports,
        )),
        transfer(TransferParams(
            from_pubkey=from_pubkey,
            to_pubkey=get_platform_fee_account(),
            lamports=fees.platform_fee_lamports,
        )),
    ]
    return instructions, fees


def _borsh_string(value, max_bytes):
    # u32 little-endian length prefix followed by UTF-8 bytes, cut at a character boundary
    encoded = value.encode('utf-8')[:max_bytes].decode('utf-8', errors='ignore').encode('utf-8')
    return struct.pack('<I', len(encoded)) + encoded


def find_metadata_address(mint):
    """Derive the Metaplex metadata PDA for a mint."""
    seeds = [b'metadata', bytes(TOKEN_METADATA_PROGRAM_ID), bytes(mint)]
    address, _ = Pubkey.find_program_address(seeds, TOKEN_METADATA_PROGRAM_ID)
    return address


def build_metadata_instruction(mint, mint_authority, payer, update_authority, name, symbol, uri):
    """
    Build a Metaplex ``CreateMetadataAccountV3`` instruction.

    Data layout: discriminator (u8) + DataV2 {name, symbol, uri,
    seller_fee_basis_points u16, creators None, collection None, uses None}
    + is_mutable (bool) + collection_details None.

    Raises:
        TransactionBuildError: If the URI does not fit the metadata account
    """
    if len(uri.encode('utf-8')) > MAX_URI_LENGTH:
        raise TransactionBuildError(f"Receipt URI exceeds {MAX_URI_LENGTH} bytes.")

    data = bytearray([CREATE_METADATA_ACCOUNT_V3])
    data += _borsh_string(name, MAX_NAME_LENGTH)
    data += _borsh_string(symbol, MAX_SYMBOL_LENGTH)
    data += _borsh_string(uri, MAX_URI_LENGTH)
    data += struct.pack('<H', 0)
    data += bytes([0, 0, 0])
    data.append(1)
    data.append(0)

    accounts = [
        AccountMeta(pubkey=find_metadata_address(mint), is_signer=False, is_writable=True),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=mint_authority, is_signer=True, is_writable=False),
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=update_authority, is_signer=True, is_writable=False),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=TOKEN_METADATA_PROGRAM_ID, data=bytes(data), accounts=accounts)


def build_receipt_instructions(payer, recipient, mint, rent_lamports, name, symbol, uri):
    """
    Instructions minting a one-off receipt token to the recipient.

    The payer funds the mint account and is mint authority, freeze
    authority and metadata update authority.

    Args:
        payer: Donor public key (fee payer)
        recipient: Creator public key receiving the token
        mint: Public key of the new mint account (must sign the transaction)
        rent_lamports: Rent-exempt balance for a mint account
        name: On-chain token name
        symbol: On-chain token symbol
        uri: Off-chain metadata URI

    Returns:
        list: Instructions in execution order
    """
    recipient_token_account = get_associated_token_address(recipient, mint)
    return [
        create_account(CreateAccountParams(
            from_pubkey=payer,
            to_pubkey=mint,
            lamports=rent_lamports,
            space=MINT_LEN,
            owner=TOKEN_PROGRAM_ID,
        )),
        initialize_mint(InitializeMintParams(
            decimals=0,
            program_id=TOKEN_PROGRAM_ID,
            mint=mint,
            mint_authority=payer,
            freeze_authority=payer,
        )),
        build_metadata_instruction(
            mint=mint,
            mint_authority=payer,
            payer=payer,
            update_authority=payer,
            name=name,
            symbol=symbol,
            uri=uri,
        ),
        create_associated_token_account(payer=payer, owner=recipient, mint=mint),
        mint_to(MintToParams(
            program_id=TOKEN_PROGRAM_ID,
            mint=mint,
            dest=recipient_token_account,
            mint_authority=payer,
            amount=1,
        )),
    ]


@dataclass
class ReceiptRequest:
    """What to mint as the commemorative receipt; ``mint`` is a fresh keypair."""
    mint: Keypair
    name: str
    symbol: str
    uri: str


@dataclass
class TipTransaction:
    transaction: str
    blockhash: str
    last_valid_block_height: int
    fees: FeeBreakdown
    mint: str = None

    def to_dict(self):
        return {
            'transaction': self.transaction,
            'blockhash': self.blockhash,
            'lastValidBlockHeight': self.last_valid_block_height,
            'fees': self.fees.to_dict(),
            'mint': self.mint,
        }


def create_tip_transaction(client, tip_amount, from_pubkey, to_pubkey, receipt=None):
    """
    Assemble the tip transaction for the donor's wallet to sign.

    Instruction order: creator transfer, platform fee transfer, then the
    receipt instructions when ``receipt`` is given.

    Args:
        client: solana-py Client used for the blockhash and rent lookups
        tip_amount: Tip in SOL
        from_pubkey: Donor public key, also the fee payer
        to_pubkey: Creator public key
        receipt: Optional ReceiptRequest for the commemorative token

    Returns:
        TipTransaction: Base64 wire transaction plus the data needed to confirm it

    Raises:
        SolanaRpcError: If the RPC endpoint fails
        TransactionBuildError: If the receipt cannot be encoded
    """
    instructions, fees = build_tip_instructions(from_pubkey, to_pubkey, tip_amount)

    try:
        latest = client.get_latest_blockhash().value
        rent_lamports = client.get_minimum_balance_for_rent_exemption(MINT_LEN).value if receipt else 0
    except Exception as exc:
        logger.warning("Solana RPC request failed while building tip transaction: %s", exc)
        raise SolanaRpcError("Could not reach the Solana network. Please try again.") from exc

    if receipt:
        instructions += build_receipt_instructions(
            payer=from_pubkey,
            recipient=to_pubkey,
            mint=receipt.mint.pubkey(),
            rent_lamports=rent_lamports,
            name=receipt.name,
            symbol=receipt.symbol,
            uri=receipt.uri,
        )

    message = Message.new_with_blockhash(instructions, from_pubkey, latest.blockhash)
    transaction = Transaction.new_unsigned(message)
    if receipt:
        transaction.partial_sign([receipt.mint], latest.blockhash)

    return TipTransaction(
        transaction=base64.b64encode(bytes(transaction)).decode('ascii'),
        blockhash=str(latest.blockhash),
        last_valid_block_height=latest.last_valid_block_height,
        fees=fees,
        mint=str(receipt.mint.pubkey()) if receipt else None,
    )


def _rpc_request(method, params):
    payload = {'jsonrpc': '2.0', 'id': 1, 'method': method, 'params': params}
    try:
        response = requests.post(settings.SOLANA_RPC_URL, json=payload, timeout=settings.SOLANA_RPC_TIMEOUT)
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as exc:
        raise SolanaRpcError(f"{method} failed: {exc}") from exc
    if data.get('error'):
        raise SolanaRpcError(f"{method} failed: {data['error'].get('message', data['error'])}")
    return data.get('result')


def verify_tip_signature(signature, recipient_wallet, expected_lamports):
    """
    Check that a transaction paid the recipient at least the expected amount.

    Looks the signature up with ``getTransaction`` at ``confirmed``
    commitment and compares the recipient's pre/post balances.

    Args:
        signature: Base58 transaction signature
        recipient_wallet: Base58 address that should have been credited
        expected_lamports: Minimum credit in lamports

    Returns:
        bool: True if the transaction succeeded and credited enough

    Raises:
        SolanaRpcError: If the RPC endpoint fails
    """
    result = _rpc_request('getTransaction', [
        signature,
        {'encoding': 'json', 'commitment': 'confirmed', 'maxSupportedTransactionVersion': 0},
    ])
    if not result:
        return False

    meta = result.get('meta') or {}
    if meta.get('err') is not None:
        return False

    raw_keys = result.get('transaction', {}).get('message', {}).get('accountKeys', [])
    account_keys = [k.get('pubkey') if isinstance(k, dict) else k for k in raw_keys]
    # Versioned transactions list lookup-table accounts after the static keys
    loaded = meta.get('loadedAddresses') or {}
    account_keys += loaded.get('writable', []) + loaded.get('readonly', [])

    try:
        index = account_keys.index(recipient_wallet)
    except ValueError:
        return False

    credited = meta['postBalances'][index] - meta['preBalances'][index]
    return credited >= expected_lamports
