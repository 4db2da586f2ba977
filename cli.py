#!/usr/bin/env python3
"""Simple CLI for poking at the settlement provider and chain RPC locally"""

import argparse
import asyncio
from typing import List, Optional

from offramp.config import settings
from offramp.container import OffRampServices
from offramp.core.chains import DEFAULT_CHAIN, get_chain, get_token
from offramp.core.errors import OffRampError


async def cli_currencies(services: OffRampServices):
    currencies = await services.quotes.load_currencies()
    source = "fallback list" if services.quotes.currencies_from_fallback else "provider"
    print(f"\n💱 Supported currencies ({source})")
    print("=" * 40)
    for currency in currencies:
        print(f"{currency.code:<5} {currency.symbol:<4} {currency.name}")


async def cli_institutions(services: OffRampServices, currency: str):
    print(f"🔍 Fetching institutions for {currency.upper()}...")
    try:
        institutions = await services.institutions.institutions(currency)
    except OffRampError as e:
        print(f"❌ Error: {e.message}")
        return

    for i, institution in enumerate(institutions, 1):
        print(f"{i:3d}. {institution.code:<14} {institution.name} ({institution.type})")
    if not institutions:
        print("No institutions returned")


async def cli_quote(services: OffRampServices, amount: str, currency: str, token: str, chain_id: int):
    try:
        chain = get_chain(chain_id)
        token_config = get_token(token)
        await services.quotes.load_currencies()
        quote = await services.quotes.quote(token_config, amount, currency, chain)
    except OffRampError as e:
        print(f"❌ Error: {e.message}")
        return

    receive = services.quotes.estimate_receive(quote)
    print(f"\n📈 Quote on {chain.name}")
    print("=" * 40)
    print(f"Amount:     {quote.amount} {quote.token}")
    print(f"Rate:       {quote.rate} {quote.currency}/{quote.token}")
    print(f"Sender fee: {settings.sender_fee_rate * 100}%")
    print(f"You get:    ~{receive:,} {quote.currency}")


async def cli_order_status(services: OffRampServices, order_id: str, watch: bool):
    try:
        if watch:
            snapshot = await services.settlement.poll_status(
                order_id,
                on_update=lambda s: print(f"   ↪ {s.status.value} (poll {s.attempts})"),
            )
        else:
            snapshot = await services.settlement.fetch_status(order_id)
    except OffRampError as e:
        print(f"❌ Error: {e.message}")
        return

    print(f"Order {snapshot.order_id}: {snapshot.status.value}")
    if snapshot.transaction_hash:
        print(f"Settlement tx: {snapshot.transaction_hash}")
    if snapshot.last_error:
        print(f"⚠️  Last poll error: {snapshot.last_error}")


async def cli_balance(services: OffRampServices, address: str, token: str, chain_id: int):
    try:
        chain = get_chain(chain_id)
        token_config = get_token(token)
        ledger = services.ledger(chain)
        balance = await ledger.balance_of(address, chain, token_config)
        native = await ledger.native_balance(address, chain)
    except OffRampError as e:
        print(f"❌ Error: {e.message}")
        return

    print(f"\n💰 {address} on {chain.name}")
    print(f"{balance.amount:>20} {balance.symbol}")
    print(f"{native.amount:>20} {native.symbol}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Off-ramp CLI")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("currencies", help="List supported fiat currencies")

    institutions_parser = subparsers.add_parser("institutions", help="List payout institutions")
    institutions_parser.add_argument("currency", help="Fiat currency code")

    quote_parser = subparsers.add_parser("quote", help="Quote a token amount into fiat")
    quote_parser.add_argument("amount", help="Token amount")
    quote_parser.add_argument("currency", nargs="?", default=settings.default_currency, help="Fiat currency code")
    quote_parser.add_argument("--token", default="USDC", help="Token symbol (default: USDC)")
    quote_parser.add_argument("--chain-id", type=int, default=DEFAULT_CHAIN.id, help="Source chain ID")

    status_parser = subparsers.add_parser("order-status", help="Show a settlement order's status")
    status_parser.add_argument("order_id", help="Settlement order ID")
    status_parser.add_argument("--watch", action="store_true", help="Poll until completed/failed or the poll budget runs out")

    balance_parser = subparsers.add_parser("balance", help="Token and native balance of an address")
    balance_parser.add_argument("address", help="Wallet address")
    balance_parser.add_argument("--token", default="USDC", help="Token symbol (default: USDC)")
    balance_parser.add_argument("--chain-id", type=int, default=DEFAULT_CHAIN.id, help="Chain ID")

    return parser


async def main(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    services = OffRampServices.build(settings)
    try:
        if args.command == "currencies":
            await cli_currencies(services)

        elif args.command == "institutions":
            await cli_institutions(services, args.currency)

        elif args.command == "quote":
            await cli_quote(services, args.amount, args.currency, args.token, args.chain_id)

        elif args.command == "order-status":
            await cli_order_status(services, args.order_id, args.watch)

        elif args.command == "balance":
            await cli_balance(services, args.address, args.token, args.chain_id)

        else:
            print(f"❌ Unknown command: {args.command}")
            parser.print_help()
    finally:
        await services.aclose()


if __name__ == "__main__":
    asyncio.run(main())
