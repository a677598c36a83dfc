"""
Command line driver for the waterfall price service.

Examples:
  python -m market_prices quote AAPL
  python -m market_prices quote EUR/USD --type currency
  python -m market_prices history BTC --type crypto --size compact --limit 5
  python -m market_prices search bitcoin
  python -m market_prices batch AAPL MSFT BTC:crypto EURUSD:currency
  python -m market_prices providers
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import Settings
from .interfaces import AssetClass, OutputSize, QuoteRequest
from .service import WaterfallPriceService, create_default_service

logger = logging.getLogger(__name__)

ASSET_CLASS_CHOICES = [a.value for a in AssetClass]
OUTPUT_SIZE_CHOICES = [o.value for o in OutputSize]


def parse_batch_item(item: str) -> QuoteRequest:
    """Parse SYMBOL[:TYPE[:CURRENCY]]."""
    parts = item.split(':')
    if len(parts) > 3 or not parts[0]:
        raise argparse.ArgumentTypeError(f"Invalid batch item: {item}. Expected SYMBOL[:TYPE[:CURRENCY]]")
    try:
        asset_class = AssetClass(parts[1].lower()) if len(parts) > 1 and parts[1] else AssetClass.STOCK
    except ValueError:
        raise argparse.ArgumentTypeError(f"Unknown asset class in {item}: {parts[1]}")
    currency = parts[2].upper() if len(parts) > 2 and parts[2] else "USD"
    return QuoteRequest(symbol=parts[0], asset_class=asset_class, currency=currency)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='python -m market_prices',
        description='Multi-provider market price lookup',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('--env-file', help='Path to a .env file with provider settings')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    quote = sub.add_parser('quote', help='Fetch the current quote for a symbol')
    quote.add_argument('symbol')
    quote.add_argument('--type', '-t', dest='asset_class', choices=ASSET_CLASS_CHOICES, default='stock')
    quote.add_argument('--currency', '-c', default='USD')

    history = sub.add_parser('history', help='Fetch daily price history for a symbol')
    history.add_argument('symbol')
    history.add_argument('--type', '-t', dest='asset_class', choices=ASSET_CLASS_CHOICES, default='stock')
    history.add_argument('--currency', '-c', default='USD')
    history.add_argument('--size', dest='output_size', choices=OUTPUT_SIZE_CHOICES, default='compact')
    history.add_argument('--limit', '-n', type=int, default=None, help='Only print the newest N records')

    search = sub.add_parser('search', help='Search symbols across all providers')
    search.add_argument('keywords', nargs='+')

    batch = sub.add_parser('batch', help='Fetch quotes for several symbols sequentially')
    batch.add_argument('items', nargs='+', type=parse_batch_item, metavar='SYMBOL[:TYPE[:CURRENCY]]')

    sub.add_parser('providers', help='Show registered providers')
    sub.add_parser('market-hours', help='Check whether US markets are likely open')

    return parser


def run(args: argparse.Namespace, service: WaterfallPriceService) -> object:
    """Execute a parsed command and return a JSON-serializable result."""
    if args.command == 'quote':
        quote = service.fetch_current_quote(args.symbol, AssetClass(args.asset_class), args.currency.upper())
        return quote.to_dict() if quote else None

    if args.command == 'history':
        history = service.fetch_historical_prices(
            args.symbol,
            AssetClass(args.asset_class),
            args.currency.upper(),
            OutputSize(args.output_size),
        )
        if args.limit is not None:
            history = history[:args.limit]
        return [point.to_dict() for point in history]

    if args.command == 'search':
        matches = service.search_symbols(' '.join(args.keywords))
        return [match.to_dict() for match in matches]

    if args.command == 'batch':
        quotes = service.fetch_multiple_quotes(args.items)
        return {symbol: quote.to_dict() for symbol, quote in quotes.items()}

    if args.command == 'providers':
        return service.get_provider_stats()

    if args.command == 'market-hours':
        return {'market_hours': service.is_market_hours()}

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None, service: Optional[WaterfallPriceService] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    if service is None:
        service = create_default_service(Settings.from_env(args.env_file))

    try:
        result = run(args, service)
    except Exception as e:
        # Upstream library errors pass through the waterfall unchanged
        logger.error(f"[CLI] {args.command} failed: {e}")
        print(json.dumps({'error': str(e), 'type': type(e).__name__}), file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0
