"""Confidential token ledger"""
from veil.core.token.encrypted_erc20 import EncryptedERC20

__all__ = ["EncryptedERC20"]
