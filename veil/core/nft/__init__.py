"""Escrowable NFT registry"""
from veil.core.nft.registry import NFTRegistry

__all__ = ["NFTRegistry"]
