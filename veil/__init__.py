"""
Veil - Confidential contracts prototype

A research prototype of encrypted on-chain business logic:
- Ciphertext arithmetic with access-control tags
- Confidential ERC20-style token ledger
- Sealed-bid (Vickrey) NFT auctions
- Two-phase, audited decryption oracle
"""
