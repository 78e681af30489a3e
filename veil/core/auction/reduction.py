"""
Encrypted second-price reduction.

Given escrowed deposits in submission order, compute under encryption:

    highest      - the largest deposit
    second       - the largest deposit among the others (Vickrey price)
    winner_index - position of the highest deposit
    has_winner   - highest > 0

One pass, O(n) comparisons:

    for each deposit d after the first:
        higher  = d > highest
        second  = select(higher, highest, max(second, d))
        highest = select(higher, d, highest)
        winner  = select(higher, i, winner)

The comparison is strict, so on equal deposits the earlier submission keeps
the lead and the tied amount becomes the second price. With deposits
{10, 30, 30, 5} the first 30 wins and pays 30.

All conditionals are selects; the pass has the same shape whatever the
plaintexts are.
"""

from dataclasses import dataclass
from typing import Sequence

from veil.core.fhe.ops import FheOps
from veil.core.fhe.types import EncryptedBool, EncryptedValue, FheType

WINNER_INDEX_TYPE = FheType.EUINT16


@dataclass
class ReductionResult:
    """Encrypted outcome of the reduction (all granted to the caller)."""
    highest: EncryptedValue
    second: EncryptedValue
    winner_index: EncryptedValue
    has_winner: EncryptedBool


def second_price_reduction(
    fhe: FheOps,
    deposits: Sequence[EncryptedValue],
    index_type: FheType = WINNER_INDEX_TYPE,
) -> ReductionResult:
    """
    Find the highest and second-highest deposit and the winner's position.

    Raises:
        ValueError: If deposits is empty or longer than index_type can address
    """
    if not deposits:
        raise ValueError("Reduction needs at least one deposit")
    if len(deposits) > index_type.max_value + 1:
        raise ValueError(f"Too many deposits for a {index_type.name} winner index")

    highest = deposits[0]
    second = fhe.as_encrypted(0, highest.fhe_type)
    winner = fhe.as_encrypted(0, index_type)

    for i, deposit in enumerate(deposits[1:], start=1):
        higher = fhe.gt(deposit, highest)
        second = fhe.select(higher, highest, fhe.max(second, deposit))
        highest = fhe.select(higher, deposit, highest)
        winner = fhe.select(higher, fhe.as_encrypted(i, index_type), winner)

    has_winner = fhe.gt(highest, 0)
    return ReductionResult(
        highest=highest,
        second=second,
        winner_index=winner,
        has_winner=has_winner,
    )


def clearing_price(fhe: FheOps, result: ReductionResult, reserve_price: int = 0) -> EncryptedValue:
    """
    Price paid by the winner: max(second, reserve), never above their deposit.
    """
    price = result.second
    if reserve_price:
        price = fhe.max(price, reserve_price)
    return fhe.min(price, result.highest)
