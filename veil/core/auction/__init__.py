"""Sealed-bid second-price NFT auctions"""
from veil.core.auction.reduction import (
    ReductionResult,
    second_price_reduction,
    clearing_price,
)
from veil.core.auction.vickrey import (
    AuctionState,
    Auction,
    Bid,
    NFTVickreyAuction,
)

__all__ = [
    "ReductionResult",
    "second_price_reduction",
    "clearing_price",
    "AuctionState",
    "Auction",
    "Bid",
    "NFTVickreyAuction",
]
