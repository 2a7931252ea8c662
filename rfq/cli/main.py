"""
RFQ CLI - Command Line Interface for the RFQ settlement engine

Main entry point for all CLI commands.
"""

import json
import click
from pathlib import Path
from typing import Optional

from rfq.utils.logger import RFQLogger, setup_logging


def derive_wallet_key(wallet_name: str, password: str) -> bytes:
    """Fernet key from password, salted with the wallet name."""
    import base64
    import hashlib

    salt = wallet_name.encode()
    return base64.urlsafe_b64encode(
        hashlib.pbkdf2_hmac('sha256', password.encode(), salt, 100000)
    )


def decrypt_wallet_key(wallet_data: dict, wallet_name: str, password: str) -> Optional[bytes]:
    """
    Decrypt a wallet's private key.

    Args:
        wallet_data: Loaded wallet JSON data
        wallet_name: Wallet name (used as salt)
        password: User's password

    Returns:
        Decrypted private key bytes, or None on failure
    """
    from cryptography.fernet import Fernet, InvalidToken

    if "encrypted_private_key" not in wallet_data:
        return None

    try:
        fernet = Fernet(derive_wallet_key(wallet_name, password))
        return fernet.decrypt(wallet_data["encrypted_private_key"].encode())
    except InvalidToken:
        return None


def load_wallet(ctx, name: str) -> Optional[dict]:
    wallet_path = ctx.obj["data_dir"] / "wallets" / f"{name}.json"
    if not wallet_path.exists():
        click.echo(f"❌ Wallet '{name}' not found")
        click.echo(f"   Create with: rfq wallet create --name {name}")
        return None
    return json.loads(wallet_path.read_text())


def open_engine(ctx, tokens=None):
    """Engine over the SQLite stores in the data directory."""
    from rfq.core.settlement import SettlementEngine
    from rfq.core.storage import StorageManager

    config = ctx.obj["config"]
    storage = StorageManager(ctx.obj["data_dir"], db_name=config.db_name)
    return SettlementEngine.from_config(config, tokens=tokens, storage=storage)


def parse_address(value: str, name: str) -> bytes:
    from rfq.crypto import hex_to_bytes, is_valid_address

    if not is_valid_address(value):
        raise click.BadParameter(f"{name} must be a 0x-prefixed 20-byte address")
    return hex_to_bytes(value)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--data-dir", default=None, help="Data directory (overrides config)")
@click.option("--config", "config_path", default=None, help="JSON config file")
@click.option("--log-file", is_flag=True, help="Also write logs to the configured log directory")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, data_dir, config_path, log_file):
    """RFQ settlement engine - offers, signed bids, settlement"""
    import logging
    from dataclasses import replace
    from rfq.core.config import load_config
    from rfq.core.exceptions import ConfigError

    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e))
    if data_dir:
        config = replace(config, data_dir=Path(data_dir).expanduser())

    level = logging.DEBUG if debug else config.log_level
    RFQLogger.reset()
    setup_logging(
        level=level,
        log_dir=str(config.log_dir),
        log_to_file=log_file,
        stream=click.get_text_stream("stderr"),
    )

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["data_dir"] = config.data_dir
    ctx.obj["data_dir"].mkdir(parents=True, exist_ok=True)


# =============================================================================
# Wallet Commands
# =============================================================================

@cli.group()
def wallet():
    """Wallet management commands"""
    pass


@wallet.command("create")
@click.option("--name", default="default", help="Wallet name")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True, help="Encryption password")
@click.pass_context
def wallet_create(ctx, name, password):
    """Create a new encrypted wallet"""
    from cryptography.fernet import Fernet
    from rfq.crypto import generate_keypair, bytes_to_hex

    kp = generate_keypair()
    fernet = Fernet(derive_wallet_key(name, password))
    encrypted_private_key = fernet.encrypt(kp.private_key).decode('utf-8')

    wallet_path = ctx.obj["data_dir"] / "wallets" / f"{name}.json"
    if wallet_path.exists():
        click.echo(f"❌ Wallet '{name}' already exists")
        ctx.exit(1)
    wallet_path.parent.mkdir(parents=True, exist_ok=True)

    wallet_data = {
        "name": name,
        "address": kp.address_hex,
        "encrypted_private_key": encrypted_private_key,
        "public_key": bytes_to_hex(kp.public_key),
    }

    wallet_path.write_text(json.dumps(wallet_data, indent=2))

    click.echo(f"✓ Wallet created: {name}")
    click.echo(f"  Address: {kp.address_hex}")
    click.echo(f"  Saved to: {wallet_path}")
    click.echo(f"  ⚠️  Remember your password - it cannot be recovered!")


@wallet.command("list")
@click.pass_context
def wallet_list(ctx):
    """List all wallets"""
    wallet_dir = ctx.obj["data_dir"] / "wallets"
    if not wallet_dir.exists():
        click.echo("No wallets found.")
        return

    for wallet_file in sorted(wallet_dir.glob("*.json")):
        data = json.loads(wallet_file.read_text())
        click.echo(f"  {data['name']}: {data['address']}")


# =============================================================================
# Engine Commands
# =============================================================================


@cli.command("domain")
@click.pass_context
def domain(ctx):
    """Show the EIP-712 domain bids must be signed under"""
    from rfq.core.domain import DomainContext
    from rfq.core.settlement import BID_TYPE
    from rfq.crypto import bytes_to_hex

    d = DomainContext.from_config(ctx.obj["config"])
    click.echo(f"  Name: {d.name}")
    click.echo(f"  Version: {d.version}")
    click.echo(f"  Chain ID: {d.chain_id}")
    click.echo(f"  Verifying contract: {bytes_to_hex(d.verifying_contract)}")
    click.echo(f"  Separator: {bytes_to_hex(d.separator)}")
    click.echo(f"  Bid type: {BID_TYPE}")


@cli.group()
def offer():
    """Offer commands"""
    pass


@offer.command("create")
@click.option("--wallet", "wallet_name", required=True, help="Seller wallet name")
@click.option("--offer-token", required=True, help="Token being sold (0x...)")
@click.option("--bid-token", required=True, help="Token accepted as payment (0x...)")
@click.option("--min-price", required=True, type=int, help="Minimum price per whole offer token")
@click.option("--min-bid-size", required=True, type=int, help="Minimum bid amount")
@click.option("--total-size", required=True, type=int, help="Maximum bid amount")
@click.option("--decimals", default=18, type=int, help="Offer token decimals")
@click.pass_context
def offer_create(ctx, wallet_name, offer_token, bid_token, min_price, min_bid_size, total_size, decimals):
    """Post a new offer"""
    from rfq.core.exceptions import RFQError
    from rfq.core.tokens import InMemoryTokenDirectory

    wallet_data = load_wallet(ctx, wallet_name)
    if wallet_data is None:
        ctx.exit(1)

    seller = parse_address(wallet_data["address"], "seller")
    offer_token_addr = parse_address(offer_token, "offer-token")
    bid_token_addr = parse_address(bid_token, "bid-token")

    # No live token service: the decimals snapshot comes from the option
    tokens = InMemoryTokenDirectory()
    tokens.create(offer_token_addr, decimals=decimals)

    engine = open_engine(ctx, tokens=tokens)
    try:
        offer_id = engine.create_offer(
            seller, offer_token_addr, bid_token_addr, min_price, min_bid_size, total_size
        )
    except RFQError as e:
        click.echo(f"❌ Offer rejected: {e}")
        ctx.exit(1)

    click.echo(f"✓ Offer created: {offer_id}")


@offer.command("show")
@click.argument("offer_id", type=int)
@click.pass_context
def offer_show(ctx, offer_id):
    """Show an offer"""
    from rfq.core.exceptions import OfferNotFound

    engine = open_engine(ctx)
    try:
        record = engine.get_offer(offer_id)
    except OfferNotFound:
        click.echo(f"❌ Offer {offer_id} not found")
        ctx.exit(1)

    click.echo(json.dumps(record.to_dict(), indent=2))


@offer.command("list")
@click.pass_context
def offer_list(ctx):
    """List stored offers"""
    engine = open_engine(ctx)
    offers = engine.list_offers()

    if not offers:
        click.echo("No offers found.")
        return

    click.echo(f"{len(offers)} offer(s):")
    for record in offers:
        data = record.to_dict()
        click.echo(f"  #{record.offer_id}  seller {data['seller']}  {data['offer_token']} -> {data['bid_token']}")


@cli.command("delegate")
@click.option("--wallet", "wallet_name", required=True, help="Bidder wallet name")
@click.option("--signer", required=True, help="Delegate signer address (0x...)")
@click.pass_context
def delegate(ctx, wallet_name, signer):
    """Authorize another key to sign bids for this wallet"""
    from rfq.core.exceptions import RFQError

    wallet_data = load_wallet(ctx, wallet_name)
    if wallet_data is None:
        ctx.exit(1)

    bidder = parse_address(wallet_data["address"], "bidder")
    new_signer = parse_address(signer, "signer")

    engine = open_engine(ctx)
    try:
        engine.delegate_to_signer(bidder, new_signer)
    except RFQError as e:
        click.echo(f"❌ Delegation rejected: {e}")
        ctx.exit(1)

    click.echo(f"✓ {wallet_data['address']} delegated to {signer.lower()}")


@cli.command("nonce")
@click.argument("address")
@click.pass_context
def nonce(ctx, address):
    """Show the next unused nonce of a signer"""
    engine = open_engine(ctx)
    click.echo(str(engine.nonces(parse_address(address, "address"))))


# =============================================================================
# Bid Commands
# =============================================================================


@cli.group()
def bid():
    """Bid signing and inspection"""
    pass


@bid.command("sign")
@click.option("--wallet", "wallet_name", required=True, help="Signer wallet name")
@click.option("--password", prompt=True, hide_input=True, help="Wallet password")
@click.option("--offer-id", required=True, type=int)
@click.option("--bid-id", required=True, type=int)
@click.option("--bidder", default=None, help="Bidder address (defaults to the signer)")
@click.option("--bid-token", required=True, help="Payment token (0x...)")
@click.option("--offer-token", required=True, help="Token received (0x...)")
@click.option("--bid-amount", required=True, type=int)
@click.option("--sell-amount", required=True, type=int)
@click.option("--nonce", "nonce_value", default=None, type=int, help="Nonce (defaults to current)")
@click.option("--out", type=click.Path(dir_okay=False), default=None, help="Write bid JSON here")
@click.pass_context
def bid_sign(ctx, wallet_name, password, offer_id, bid_id, bidder, bid_token, offer_token,
             bid_amount, sell_amount, nonce_value, out):
    """Sign a bid and print it as JSON"""
    from rfq.core.settlement import Bid
    from rfq.crypto import keypair_from_private_key

    wallet_data = load_wallet(ctx, wallet_name)
    if wallet_data is None:
        ctx.exit(1)

    private_key = decrypt_wallet_key(wallet_data, wallet_name, password)
    if private_key is None:
        click.echo("❌ Wrong password")
        ctx.exit(1)

    kp = keypair_from_private_key(private_key)
    engine = open_engine(ctx)

    unsigned = Bid(
        offer_id=offer_id,
        bid_id=bid_id,
        signer_address=kp.address,
        bidder_address=parse_address(bidder, "bidder") if bidder else kp.address,
        bid_token=parse_address(bid_token, "bid-token"),
        offer_token=parse_address(offer_token, "offer-token"),
        bid_amount=bid_amount,
        sell_amount=sell_amount,
    )
    if nonce_value is None:
        nonce_value = engine.nonces(kp.address)

    signed = engine.verifier.sign_bid(unsigned, nonce_value, private_key)
    payload = json.dumps(signed.to_dict(), indent=2)

    if out:
        Path(out).write_text(payload)
        click.echo(f"✓ Bid signed with nonce {nonce_value}, written to {out}")
    else:
        click.echo(payload)


@bid.command("signer")
@click.argument("bid_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def bid_signer(ctx, bid_file):
    """Recover who signed a bid (using the signer's current nonce)"""
    from rfq.core.exceptions import RFQError
    from rfq.core.settlement import Bid
    from rfq.crypto import bytes_to_hex

    engine = open_engine(ctx)
    try:
        signed = Bid.from_dict(json.loads(Path(bid_file).read_text()))
        recovered = engine.get_bid_signer(signed)
    except (RFQError, json.JSONDecodeError) as e:
        click.echo(f"❌ {e}")
        ctx.exit(1)

    click.echo(bytes_to_hex(recovered))
    if recovered != signed.signer_address:
        click.echo("⚠️  Does not match signer_address (stale nonce or tampered bid)")


# =============================================================================
# Demo Command
# =============================================================================


@cli.command("demo")
@click.pass_context
def demo(ctx):
    """Run the create / sign / check / settle / replay scenario in memory"""
    from rfq.core.exceptions import InvalidSignature
    from rfq.core.settlement import Bid, SettlementEngine
    from rfq.core.tokens import InMemoryTokenDirectory
    from rfq.crypto import generate_keypair, bytes_to_hex

    click.echo("=" * 60)
    click.echo("  RFQ SETTLEMENT - DEMO")
    click.echo("=" * 60)
    click.echo()

    config = ctx.obj["config"]
    seller = generate_keypair()
    bidder = generate_keypair()

    tokens = InMemoryTokenDirectory()
    t1 = tokens.create(bytes.fromhex("11" * 20), decimals=18, symbol="T1")
    t2 = tokens.create(bytes.fromhex("22" * 20), decimals=6, symbol="T2")

    engine = SettlementEngine.from_config(config, tokens=tokens)

    click.echo("📦 Funding accounts...")
    t1.mint(seller.address, 100 * 10**18)
    t2.mint(bidder.address, 100_000 * 10**6)
    t1.approve(seller.address, engine.address, 10 * 10**18)
    t2.approve(bidder.address, engine.address, 10_000 * 10**6)
    click.echo(f"  ✓ Seller {bytes_to_hex(seller.address)[:12]}... holds 100 T1")
    click.echo(f"  ✓ Bidder {bytes_to_hex(bidder.address)[:12]}... holds 100000 T2")
    click.echo()

    click.echo("🏷️  Seller posts offer...")
    offer_id = engine.create_offer(
        seller.address, t1.address, t2.address,
        min_price=1000 * 10**6, min_bid_size=10**18, total_size=10 * 10**18,
    )
    click.echo(f"  ✓ Offer {offer_id}: sell up to 10 T1 at >= 1000 T2 each")
    click.echo()

    click.echo("✍️  Bidder signs bid...")
    signed = engine.verifier.sign_bid(
        Bid(
            offer_id=offer_id,
            bid_id=1,
            signer_address=bidder.address,
            bidder_address=bidder.address,
            bid_token=t2.address,
            offer_token=t1.address,
            bid_amount=10 * 10**18,
            sell_amount=10_000 * 10**6,
        ),
        engine.nonces(bidder.address),
        bidder.private_key,
    )
    result = engine.check_bid(signed)
    click.echo(f"  ✓ check_bid: {result.error_count} violations {result.codes()}")
    click.echo()

    click.echo("⚖️  Seller settles...")
    engine.settle_offer(seller.address, offer_id, signed)
    click.echo(f"  ✓ Bidder T1: {t1.balance_of(bidder.address)}")
    click.echo(f"  ✓ Seller T2: {t2.balance_of(seller.address)}")
    click.echo(f"  ✓ Bidder nonce: {engine.nonces(bidder.address)}")
    click.echo()

    click.echo("🔁 Replaying the same bid...")
    try:
        engine.settle_offer(seller.address, offer_id, signed)
        click.echo("  ❌ Replay accepted")
        ctx.exit(1)
    except InvalidSignature:
        click.echo("  ✓ Rejected: InvalidSignature")
    click.echo()
    click.echo("✅ Demo complete!")
