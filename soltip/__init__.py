"""
SOLTIP Django Application

A platform for creators to receive SOL tips from their supporters.

Features:
- Creator profiles keyed by Solana wallet address, with bios, avatars and social links
- Tip transactions built server-side and signed by the supporter's wallet
- Platform fee routing (3% + 0.001 SOL) within the same transaction
- Optional commemorative NFT receipt minted to the creator
- Donation history, creator search and on-chain signature verification
- Image upload proxy with metadata stripping

The application handles the flow from creator discovery to recording the
confirmed tip, leaving custody of funds entirely to the users' wallets.
"""
