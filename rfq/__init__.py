"""
RFQ Settlement Engine

Authorization and bookkeeping for request-for-quote style settlement:
- EIP-712 typed-data bids signed off-chain by bidders or their delegates
- Per-signer nonce replay protection
- Bidder -> signer delegation
- Aggregated pre-flight bid validation
- Atomic two-leg settlement through an external token ledger
"""

__version__ = "0.1.0"
