"""
Veil CLI - Command Line Interface for the confidential contracts runtime

Main entry point for all CLI commands.
"""

import json
import click
from pathlib import Path

from veil.utils.logger import setup_logging


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--data-dir", default=None, help="Data directory (overrides VEIL_DATA_DIR)")
@click.option("--config", "config_path", default=None, help="JSON config file")
@click.option("--log-file", is_flag=True, help="Also write logs to veil.log in the configured log dir")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, data_dir, config_path, log_file):
    """Veil - confidential token and sealed-bid auction runtime"""
    import logging
    from veil.core.config import load_config

    config = load_config(config_path)
    if data_dir:
        config = config.model_copy(update={"data_dir": Path(data_dir).expanduser()})

    level = logging.DEBUG if debug else logging.INFO
    setup_logging(level=level, log_dir=str(config.log_dir), log_to_file=log_file)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# =============================================================================
# Config Commands
# =============================================================================


@cli.group()
def config():
    """Configuration commands"""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx):
    """Print the effective configuration"""
    click.echo(json.dumps(ctx.obj["config"].model_dump(mode="json"), indent=2))


# =============================================================================
# Demo Commands
# =============================================================================


@cli.group()
def demo():
    """Run scripted demos on an in-process chain"""
    pass


def _reveal(chain, value, keypair) -> int:
    """Decrypt a value the way a wallet would, signing for its own address."""
    from veil.core.fhe import user_decrypt_digest
    from veil.crypto import sign

    nonce = chain.oracle.user_decrypt_nonce(keypair.address)
    signature = sign(user_decrypt_digest(value.handle, keypair.address, nonce), keypair.private_key)
    return chain.oracle.user_decrypt_signed(value, keypair.address, signature)


def _new_chain(ctx, persist: bool):
    from veil.core.runtime import Chain
    from veil.core.storage import StorageManager

    config = ctx.obj["config"]
    storage = None
    if persist:
        config.ensure_dirs()
        storage = StorageManager(config.data_dir)
    return Chain(config=config, storage_manager=storage)


@demo.command("token")
@click.option("--amount", default=300, type=int, help="Amount Alice sends to Bob")
@click.option("--persist", is_flag=True, help="Write events and audit trail to the data dir")
@click.pass_context
def demo_token(ctx, amount, persist):
    """Confidential transfers, including one that silently moves nothing"""
    from veil.core.token import EncryptedERC20
    from veil.crypto import generate_keypair

    chain = _new_chain(ctx, persist)
    alice_key = generate_keypair()
    bob_key = generate_keypair()
    alice, bob = alice_key.address, bob_key.address
    cop = chain.coprocessor

    click.echo("=" * 60)
    click.echo("  VEIL - CONFIDENTIAL TOKEN DEMO")
    click.echo("=" * 60)
    click.echo()

    token = chain.deploy(alice, EncryptedERC20, "Veil Dollar", "VUSD")
    chain.transact(alice, token.mint, 1000)
    click.echo(f"📦 Deployed {token.symbol} at {token.address}, minted 1000 to Alice")

    for value in (amount, 10_000):
        enc = cop.encrypt_input(value, token.fhe_type, token.address, alice)
        receipt = chain.transact(alice, token.transfer, bob, enc.handle, enc.proof)
        ok = _reveal(chain, receipt.return_value, alice_key)
        click.echo(f"💸 Alice -> Bob {value}: success flag (visible to Alice only) = {bool(ok)}")

    alice_balance = _reveal(chain, token.balance_of(alice), alice_key)
    bob_balance = _reveal(chain, token.balance_of(bob), bob_key)
    click.echo(f"  Alice balance: {alice_balance}")
    click.echo(f"  Bob balance:   {bob_balance}")
    click.echo()
    click.echo(f"📊 {chain.stats()}")
    click.echo("✅ Demo complete!")


@demo.command("auction")
@click.option("--bids", default="10,30,30,5", help="Comma-separated bid amounts")
@click.option("--reserve", default=0, type=int, help="Public reserve price")
@click.option("--persist", is_flag=True, help="Write events and audit trail to the data dir")
@click.pass_context
def demo_auction(ctx, bids, reserve, persist):
    """Sealed-bid second-price auction of an NFT"""
    from veil.core.auction import NFTVickreyAuction
    from veil.core.nft import NFTRegistry
    from veil.core.token import EncryptedERC20
    from veil.crypto import generate_keypair

    try:
        amounts = [int(b) for b in bids.split(",") if b.strip()]
    except ValueError:
        raise click.BadParameter("bids must be comma-separated integers", param_hint="--bids")
    if not amounts:
        raise click.BadParameter("at least one bid is required", param_hint="--bids")

    chain = _new_chain(ctx, persist)
    cop = chain.coprocessor
    seller_key = generate_keypair()
    seller = seller_key.address
    bidder_keys = [generate_keypair() for _ in amounts]
    bidders = [k.address for k in bidder_keys]

    click.echo("=" * 60)
    click.echo("  VEIL - SEALED-BID VICKREY AUCTION DEMO")
    click.echo("=" * 60)
    click.echo()

    token = chain.deploy(seller, EncryptedERC20, "Veil Dollar", "VUSD")
    nft = chain.deploy(seller, NFTRegistry, "Veil Art", "VART")
    auction = chain.deploy(seller, NFTVickreyAuction)

    chain.transact(seller, token.mint, 1000 * len(bidders))
    for bidder in bidders:
        enc = cop.encrypt_input(1000, token.fhe_type, token.address, seller)
        chain.transact(seller, token.transfer, bidder, enc.handle, enc.proof)
    chain.transact(seller, nft.mint, seller, 1)
    chain.transact(seller, nft.approve, auction.address, 1)
    click.echo(f"📦 Funded {len(bidders)} bidders with 1000 VUSD, minted VART #1")

    start = chain.block_height
    receipt = chain.transact(
        seller, auction.create_auction, nft.address, 1, token.address,
        start + 5, start + 20, None, reserve,
    )
    auction_id = receipt.return_value
    click.echo(f"🏛️  Auction {auction_id} open until block {start + 5} (reserve {reserve})")

    for i, (bidder, value) in enumerate(zip(bidders, amounts)):
        approval = cop.encrypt_input(value, token.fhe_type, token.address, bidder)
        chain.transact(bidder, token.approve, auction.address, approval.handle, approval.proof)
        bid = cop.encrypt_input(value, token.fhe_type, auction.address, bidder)
        chain.transact(bidder, auction.bid, auction_id, bid.handle, bid.proof)
        click.echo(f"  🔒 Bidder {i} sealed a bid")

    chain.mine(5)
    request_id = chain.transact(seller, auction.settle, auction_id).return_value
    if request_id is None:
        click.echo(f"⚖️  Closed without bids: {auction.get_state(auction_id).name}")
        return
    click.echo(f"⚖️  Settlement requested (decryption request {request_id})")

    chain.oracle.fulfill(request_id)
    result = auction.get_auction(auction_id)
    click.echo(f"  State: {result.state.name}")
    if result.winner:
        index = bidders.index(result.winner)
        price = _reveal(chain, result.clearing_price, seller_key)
        click.echo(f"  Winner: bidder {index} ({result.winner[:12]}...)")
        click.echo(f"  Price paid: {price}")
        click.echo(f"  NFT owner: {nft.owner_of(1)[:12]}...")
    for i, (bidder, key) in enumerate(zip(bidders, bidder_keys)):
        balance = _reveal(chain, token.balance_of(bidder), key)
        click.echo(f"  Bidder {i} balance: {balance}")

    click.echo()
    click.echo(f"📊 {chain.stats()}")
    click.echo("✅ Demo complete!")


if __name__ == "__main__":
    cli()
