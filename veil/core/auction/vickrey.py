"""
NFTVickreyAuction - sealed-bid, second-price auctions of escrowed NFTs.

Lifecycle:
---------
    CREATED -> OPEN -> CLOSED -> SETTLING -> SETTLED      (terminal)
    CREATED -> OPEN -> CANCELLED                          (terminal)
    CLOSED  -> CANCELLED  (nobody bid, or no escrowed bid survived)

CREATED -> OPEN happens at `start_block` and OPEN -> CLOSED at
`bidding_deadline`. Both are applied lazily by whichever call touches the
auction next; a bid at or after the deadline is rejected.

Bidding:
-------
A bid is an encrypted amount escrowed in the payment token (the bidder
approves this contract first). A rebid refunds the previous deposit in full
before escrowing the new one, and moves the bidder to the back of the
submission order. The escrowed deposit is select(transfer_ok, amount, 0),
so a bid the bidder cannot cover becomes a zero bid instead of a revert.

Settlement:
----------
`settle` runs the encrypted second-price reduction (see reduction.py) over
the deposits in submission order and asks the decryption oracle for two
values only: the winner's position and whether anyone bid above zero. The
auction waits in SETTLING until the oracle calls back with a signed result
(correlation id = request id). If the request expires first (at the
settlement deadline, or after the configured timeout when settling late),
`settle` may be called again to reissue it.

On the callback the NFT goes to the winner, the winner gets back
deposit - price, every other bidder gets their whole deposit back and the
seller receives the price. Losing amounts are never decrypted.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional

from veil.core.auction.reduction import clearing_price, second_price_reduction
from veil.core.errors import (
    InvalidArgument,
    InvalidStateTransition,
    MalformedProof,
    Unauthorized,
)
from veil.core.fhe.oracle import DecryptionStatus
from veil.core.fhe.types import EncryptedBool, EncryptedValue
from veil.core.nft.registry import NFTRegistry
from veil.core.runtime.contract import Contract
from veil.core.token.encrypted_erc20 import EncryptedERC20
from veil.utils.logger import get_logger
from veil.utils.validation import (
    require_valid,
    validate_address,
    validate_amount,
    validate_deadlines,
    validate_token_id,
)

logger = get_logger("auction")


# =============================================================================
# Enums
# =============================================================================


class AuctionState(IntEnum):
    """State of a sealed-bid auction."""
    CREATED = 0     # Asset escrowed, bidding not started
    OPEN = 1        # Accepting bids
    CLOSED = 2      # Bidding over, awaiting settle()
    SETTLING = 3    # Winner decryption requested
    SETTLED = 4     # Asset and funds released
    CANCELLED = 5   # Asset returned to seller, bids refunded


TERMINAL_STATES = (AuctionState.SETTLED, AuctionState.CANCELLED)


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class Bid:
    """
    A bidder's current escrowed bid.

    `sequence` is the global submission counter at the time of this bid and
    decides ties: lower sequence wins.
    """
    bidder: str
    deposit: EncryptedValue
    sequence: int
    submitted_block: int


@dataclass
class Auction:
    """A single auction and its settlement bookkeeping."""
    auction_id: int
    seller: str
    nft: str
    token_id: int
    payment_token: str
    start_block: int
    bidding_deadline: int
    settlement_deadline: int
    reserve_price: int = 0
    state: AuctionState = AuctionState.CREATED

    # bidder -> current bid
    bids: Dict[str, Bid] = field(default_factory=dict)

    # Settlement
    settlement_order: List[str] = field(default_factory=list)
    winner_index: Optional[EncryptedValue] = None
    has_winner: Optional[EncryptedBool] = None
    clearing_price: Optional[EncryptedValue] = None
    pending_request_id: Optional[int] = None

    # Outcome
    winner: Optional[str] = None
    cancel_reason: Optional[str] = None

    def ordered_bids(self) -> List[Bid]:
        """Bids in submission order (earliest first)."""
        return sorted(self.bids.values(), key=lambda b: b.sequence)

    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


# =============================================================================
# Contract
# =============================================================================


class NFTVickreyAuction(Contract):
    """
    Hosts any number of sealed-bid second-price auctions.

    No constructor arguments: the asset, payment token and schedule are
    chosen per auction.
    """

    _state_fields = ("auctions", "pending_settlements", "next_auction_id", "bid_sequence")

    def __init__(self, chain, address: str, owner: str):
        super().__init__(chain, address, owner)
        self.auctions: Dict[int, Auction] = {}
        self.pending_settlements: Dict[int, int] = {}  # request_id -> auction_id
        self.next_auction_id = 1
        self.bid_sequence = 0

    # =========================================================================
    # Queries
    # =========================================================================

    def get_auction(self, auction_id: int) -> Auction:
        auction = self.auctions.get(auction_id)
        if auction is None:
            raise InvalidArgument(f"Unknown auction {auction_id}")
        return auction

    def get_state(self, auction_id: int) -> AuctionState:
        """State as of the current block, including pending lazy transitions."""
        return self._effective_state(self.get_auction(auction_id))

    def get_bid(self, auction_id: int, bidder: str) -> Optional[EncryptedValue]:
        """Encrypted escrowed deposit of a bidder (readable by that bidder)."""
        bid = self.get_auction(auction_id).bids.get(bidder)
        return bid.deposit if bid is not None else None

    def bidder_count(self, auction_id: int) -> int:
        return len(self.get_auction(auction_id).bids)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _effective_state(self, auction: Auction) -> AuctionState:
        state = auction.state
        height = self.block_height
        if state == AuctionState.CREATED and height >= auction.start_block:
            state = AuctionState.OPEN
        if state == AuctionState.OPEN and height >= auction.bidding_deadline:
            state = AuctionState.CLOSED
        return state

    def _sync(self, auction: Auction) -> AuctionState:
        new_state = self._effective_state(auction)
        if new_state != auction.state:
            logger.debug(f"Auction {auction.auction_id}: {auction.state.name} -> {new_state.name}")
            auction.state = new_state
        return new_state

    def create_auction(
        self,
        nft: str,
        token_id: int,
        payment_token: str,
        bidding_deadline: int,
        settlement_deadline: int,
        start_block: Optional[int] = None,
        reserve_price: int = 0,
    ) -> int:
        """
        Escrow an NFT and open an auction for it.

        The sender must own the NFT and have approved this contract.

        Returns:
            auction_id
        """
        require_valid(validate_address(nft, "nft"))
        require_valid(validate_address(payment_token, "payment_token"))
        require_valid(validate_token_id(token_id))

        registry = self.chain.get_contract(nft)
        if not isinstance(registry, NFTRegistry):
            raise InvalidArgument(f"{nft} is not an NFT registry")
        token = self.chain.get_contract(payment_token)
        if not isinstance(token, EncryptedERC20):
            raise InvalidArgument(f"{payment_token} is not an encrypted token")

        if start_block is None:
            start_block = self.block_height
        require_valid(validate_deadlines(self.block_height, start_block, bidding_deadline, settlement_deadline))
        require_valid(validate_amount(reserve_price, token.fhe_type.max_value))

        seller = self.msg_sender
        self.call(registry.transfer_from, seller, self.address, token_id)

        auction = Auction(
            auction_id=self.next_auction_id,
            seller=seller,
            nft=nft,
            token_id=token_id,
            payment_token=payment_token,
            start_block=start_block,
            bidding_deadline=bidding_deadline,
            settlement_deadline=settlement_deadline,
            reserve_price=reserve_price,
        )
        self.next_auction_id += 1
        self.auctions[auction.auction_id] = auction
        self._sync(auction)

        self.emit(
            "AuctionCreated",
            auction_id=auction.auction_id,
            seller=seller,
            nft=nft,
            token_id=token_id,
            bidding_deadline=bidding_deadline,
        )
        logger.info(
            f"Auction {auction.auction_id} created: {registry.symbol} #{token_id}, "
            f"bidding until block {bidding_deadline}, state {auction.state.name}"
        )
        return auction.auction_id

    # =========================================================================
    # Bidding
    # =========================================================================

    def bid(self, auction_id: int, encrypted_amount: bytes, proof: bytes) -> None:
        """Place or replace the sender's sealed bid."""
        auction = self.get_auction(auction_id)
        state = self._sync(auction)
        if state != AuctionState.OPEN:
            raise InvalidStateTransition(f"Auction {auction_id} is not open for bids (state: {state.name})")

        bidder = self.msg_sender
        self.require(bidder != auction.seller, Unauthorized("Seller cannot bid on own auction"))
        if bidder not in auction.bids and len(auction.bids) >= self.chain.config.max_bidders_per_auction:
            raise InvalidStateTransition(f"Auction {auction_id} reached its bidder limit")

        token = self._payment_token(auction)
        amount = self.fhe.from_input(encrypted_amount, proof, bidder, token.fhe_type)

        prior = auction.bids.get(bidder)
        if prior is not None:
            self._refund(auction, bidder, prior.deposit)

        if auction.reserve_price:
            amount = self.fhe.select(self.fhe.ge(amount, auction.reserve_price), amount, 0)

        self.fhe.allow(amount, token.address)
        escrowed = self.call(token.transfer_from_encrypted, bidder, self.address, amount)
        deposit = self.fhe.select(escrowed, amount, 0)
        self.fhe.allow(deposit, bidder)

        self.bid_sequence += 1
        auction.bids[bidder] = Bid(
            bidder=bidder,
            deposit=deposit,
            sequence=self.bid_sequence,
            submitted_block=self.block_height,
        )

        self.emit("BidPlaced", auction_id=auction_id, bidder=bidder, rebid=prior is not None)
        logger.debug(f"Auction {auction_id}: bid #{self.bid_sequence} from {bidder[:10]}")

    # =========================================================================
    # Settlement
    # =========================================================================

    def settle(self, auction_id: int) -> Optional[int]:
        """
        Start (or retry) settlement of a closed auction.

        Returns:
            Decryption request id, or None if the auction closed without bids
        """
        auction = self.get_auction(auction_id)
        state = self._sync(auction)

        if state == AuctionState.SETTLING:
            ticket = self.chain.oracle.get_ticket(auction.pending_request_id)
            expired = ticket.status == DecryptionStatus.EXPIRED or (
                ticket.status == DecryptionStatus.PENDING
                and self.block_height > ticket.expires_at_block
            )
            if not expired:
                raise InvalidStateTransition(f"Auction {auction_id} settlement already pending")
            logger.warning(
                f"Auction {auction_id}: decryption request {ticket.request_id} expired, retrying"
            )
            self.pending_settlements.pop(ticket.request_id, None)
            return self._request_settlement(auction)

        if state != AuctionState.CLOSED:
            raise InvalidStateTransition(f"Cannot settle auction {auction_id} in state {state.name}")

        if not auction.bids:
            self._close_without_sale(auction, "no bids")
            return None

        bids = auction.ordered_bids()
        result = second_price_reduction(self.fhe, [b.deposit for b in bids])
        auction.settlement_order = [b.bidder for b in bids]
        auction.winner_index = result.winner_index
        auction.has_winner = result.has_winner
        auction.clearing_price = clearing_price(self.fhe, result, auction.reserve_price)

        logger.info(f"Auction {auction_id}: reduced {len(bids)} sealed bids")
        return self._request_settlement(auction)

    def _request_settlement(self, auction: Auction) -> int:
        if self.block_height < auction.settlement_deadline:
            expires_at = auction.settlement_deadline
        else:
            expires_at = self.block_height + self.chain.config.decryption_timeout_blocks

        ticket = self.chain.oracle.request_decryption(
            [auction.winner_index, auction.has_winner],
            requester=self.address,
            callback=(self.address, "on_settlement_decrypted"),
            expires_at_block=expires_at,
        )
        auction.pending_request_id = ticket.request_id
        auction.state = AuctionState.SETTLING
        self.pending_settlements[ticket.request_id] = auction.auction_id

        self.emit("SettlementRequested", auction_id=auction.auction_id, request_id=ticket.request_id)
        return ticket.request_id

    def on_settlement_decrypted(self, request_id: int, plaintexts: List[int], signature: bytes) -> None:
        """Oracle callback completing a settlement."""
        oracle = self.chain.oracle
        self.require(self.msg_sender == oracle.address, Unauthorized("Only the decryption oracle may deliver results"))

        auction_id = self.pending_settlements.get(request_id)
        if auction_id is None:
            raise InvalidStateTransition(f"No settlement waiting for request {request_id}")
        auction = self.get_auction(auction_id)
        if auction.state != AuctionState.SETTLING or auction.pending_request_id != request_id:
            raise InvalidStateTransition(f"Request {request_id} is stale for auction {auction_id}")
        if not oracle.verify_result(request_id, plaintexts, signature):
            raise MalformedProof("Decryption result signature does not verify")
        if len(plaintexts) != 2:
            raise MalformedProof("Settlement result must carry winner index and flag")

        del self.pending_settlements[request_id]
        auction.pending_request_id = None
        winner_index, has_winner = plaintexts

        if not has_winner:
            self._close_without_sale(auction, "no escrowed bids")
            return
        if not 0 <= winner_index < len(auction.settlement_order):
            raise MalformedProof(f"Winner index {winner_index} out of range")

        self._finalize(auction, auction.settlement_order[winner_index])

    def _finalize(self, auction: Auction, winner: str) -> None:
        token = self._payment_token(auction)
        price = auction.clearing_price

        for bid in auction.ordered_bids():
            if bid.bidder == winner:
                self._refund(auction, winner, self.fhe.sub(bid.deposit, price))
            else:
                self._refund(auction, bid.bidder, bid.deposit)

        self.fhe.allow(price, token.address)
        self.call(token.transfer_encrypted, auction.seller, price)

        for principal in (auction.seller, winner):
            self.fhe.allow(price, principal)
            self.fhe.allow(auction.winner_index, principal)

        registry = self.chain.get_contract(auction.nft)
        self.call(registry.transfer_from, self.address, winner, auction.token_id)

        auction.winner = winner
        auction.bids.clear()
        auction.state = AuctionState.SETTLED

        self.emit("AuctionSettled", auction_id=auction.auction_id, winner=winner)
        logger.info(f"Auction {auction.auction_id} settled: winner {winner}")

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel(self, auction_id: int) -> None:
        """Seller cancels before bidding closes; everything is returned."""
        auction = self.get_auction(auction_id)
        state = self._sync(auction)
        self.require(self.msg_sender == auction.seller, Unauthorized("Only the seller can cancel"))
        if state not in (AuctionState.CREATED, AuctionState.OPEN):
            raise InvalidStateTransition(f"Cannot cancel auction {auction_id} in state {state.name}")

        self._close_without_sale(auction, "cancelled by seller")

    def _close_without_sale(self, auction: Auction, reason: str) -> None:
        for bid in auction.ordered_bids():
            self._refund(auction, bid.bidder, bid.deposit)

        registry = self.chain.get_contract(auction.nft)
        self.call(registry.transfer_from, self.address, auction.seller, auction.token_id)

        auction.bids.clear()
        auction.state = AuctionState.CANCELLED
        auction.cancel_reason = reason

        self.emit("AuctionCancelled", auction_id=auction.auction_id, reason=reason)
        logger.info(f"Auction {auction.auction_id} cancelled: {reason}")

    # =========================================================================
    # Internals
    # =========================================================================

    def _payment_token(self, auction: Auction) -> EncryptedERC20:
        return self.chain.get_contract(auction.payment_token)

    def _refund(self, auction: Auction, bidder: str, amount: EncryptedValue) -> None:
        token = self._payment_token(auction)
        self.fhe.allow(amount, token.address)
        self.call(token.transfer_encrypted, bidder, amount)
        self.emit("BidRefunded", auction_id=auction.auction_id, bidder=bidder)
