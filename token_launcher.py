#!/usr/bin/env python3
"""
Token Launcher
Mint a token and seed its liquidity pool in one launch.

Usage:
  python token_launcher.py launch --name "Meme Coin" --symbol MEME --creator 0x... --logo logo.png
  python token_launcher.py status <launch_id>
  python token_launcher.py retry <launch_id>
  python token_launcher.py cancel <launch_id>
  python token_launcher.py worker            # drain queued and interrupted launches
  python token_launcher.py tiers
"""

import argparse
import asyncio
import logging
import mimetypes
import os
import sys
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv

from launchpad.config import LaunchConfig
from launchpad.database import LaunchDatabase
from launchpad.errors import LaunchError
from launchpad.models import LaunchRecord, LaunchRequest
from launchpad.orchestrator import LaunchOrchestrator
from launchpad.services import IPFSService
from launchpad.services.chain import ChainClient
from launchpad.services.pool_provisioner import ContractPoolProvisioner
from launchpad.services.token_minter import FactoryTokenMinter


class TokenLauncher:
    """Wires configuration, storage and chain services into an orchestrator"""

    def __init__(self, require_chain: bool = True):
        """Initialize the launcher"""
        load_dotenv()
        self._setup_logging()
        self.config = LaunchConfig.from_env(require_chain=require_chain)
        self.db = LaunchDatabase(self.config.db_path)
        self.ipfs_service = IPFSService.from_config(self.config)

        self.chain = None
        self.orchestrator = None
        if require_chain:
            self._setup_chain()

    def _setup_logging(self):
        """Setup logging"""
        os.makedirs('logs', exist_ok=True)

        self.logger = logging.getLogger('launchpad')
        self.logger.setLevel(logging.DEBUG)
        if self.logger.handlers:
            return

        file_handler = logging.FileHandler('logs/launchpad.log', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)

        if os.getenv('LAUNCHPAD_DEBUG', 'false').lower() == 'true':
            console_handler.setLevel(logging.DEBUG)

        formatter = logging.Formatter(
            '%(asctime)s | %(levelname)s | %(message)s'
        )
        file_handler.setFormatter(formatter)
        console_handler.setFormatter(formatter)

        self.logger.addHandler(file_handler)
        self.logger.addHandler(console_handler)

    def _setup_chain(self):
        """Connect to the chain and build the collaborators"""
        self.chain = ChainClient.from_config(self.config)
        minter = FactoryTokenMinter.from_config(self.chain, self.config)
        provisioner = ContractPoolProvisioner.from_config(self.chain, self.config)

        self.orchestrator = LaunchOrchestrator(
            self.config, self.db, self.ipfs_service, minter, provisioner)

        balance = self.chain.w3.eth.get_balance(self.chain.address)
        self.logger.info(f"Operator {self.chain.address} balance: {self.chain.w3.from_wei(balance, 'ether'):.4f} ETH")
        if balance < self.chain.w3.to_wei(0.01, 'ether'):
            self.logger.warning("Low operator balance - consider adding ETH for gas fees")

    async def load_logo(self, source: str):
        """Logo bytes and content type from a local path or an http(s) URL"""
        if source.startswith(('http://', 'https://')):
            return await self.ipfs_service.download_image(source)

        with open(source, 'rb') as f:
            content = f.read()
        content_type, _ = mimetypes.guess_type(source)
        return content, content_type or 'application/octet-stream'

    async def run_workers(self, count: int = 1):
        """Recover interrupted launches and drain the queue forever"""
        self.orchestrator.recover_interrupted()
        workers = [asyncio.create_task(self.orchestrator.launch_worker()) for _ in range(count)]
        await asyncio.gather(*workers)


def print_record(record: LaunchRecord):
    request = record.request
    print(f"\n📋 Launch {record.launch_id}")
    print(f"   Token: {request.token_name} (${request.token_symbol})")
    print(f"   Tier: {record.tier_config.name} (step {record.tier_config.step_bps} bps, v{record.tier_config.version})")
    print(f"   State: {record.state.value}")
    if record.allocation:
        print(f"   Creator amount: {record.allocation.creator_amount}")
        print(f"   Liquidity amount: {record.allocation.liquidity_amount}")
    if record.active_bin is not None:
        print(f"   Active bin: {record.active_bin}")
    if record.metadata_locator:
        print(f"   Metadata: {record.metadata_locator}")
    if record.mint_address:
        print(f"   Token address: {record.mint_address}")
    if record.pool_address:
        print(f"   Pool address: {record.pool_address}")
    if record.error:
        print(f"   ❌ Failed at {record.failed_at.value} during {record.error.step}: "
              f"[{record.error.kind}] {record.error.message}")
        if record.token_exists:
            print("   ⚠️  The token exists on chain even though the launch did not finish")


def print_tiers(config: LaunchConfig):
    print("\n📊 POOL TIERS:")
    for tier in config.tiers.values():
        protection = f"anti-sniper, {tier.activation_delay}s delay" if tier.anti_sniper else "no anti-sniper"
        print(f"   {tier.name}: step {tier.step_bps} bps, fee {tier.base_fee_bps} bps, "
              f"{protection}, launch fee {tier.launch_fee} ETH (v{tier.version})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mint a token and seed its liquidity pool")
    sub = parser.add_subparsers(dest='command', required=True)

    launch = sub.add_parser('launch', help='Start a new launch and drive it to completion')
    launch.add_argument('--name', required=True)
    launch.add_argument('--symbol', required=True)
    launch.add_argument('--creator', required=True, help='Creator wallet address')
    launch.add_argument('--logo', required=True, help='Logo file path or URL')
    launch.add_argument('--tier', default='basic')
    launch.add_argument('--price', help='Initial price in quote token per token')
    launch.add_argument('--description')
    launch.add_argument('--website')
    launch.add_argument('--queue', action='store_true', help='Only queue the launch for a worker')

    for name, text in (('status', 'Show a launch'), ('retry', 'Re-drive a failed launch'),
                       ('cancel', 'Cancel a launch that has not minted yet')):
        cmd = sub.add_parser(name, help=text)
        cmd.add_argument('launch_id')

    worker = sub.add_parser('worker', help='Run launch workers')
    worker.add_argument('--workers', type=int, default=1)

    sub.add_parser('tiers', help='Show the pool tier table')
    return parser


async def main(argv=None):
    args = build_parser().parse_args(argv)

    if args.command == 'tiers':
        print_tiers(LaunchConfig.from_env(require_chain=False))
        return

    if args.command == 'status':
        launcher = TokenLauncher(require_chain=False)
        record = launcher.db.load_launch(args.launch_id)
        if record is None:
            print(f"❌ No launch with id {args.launch_id}")
            return
        print_record(record)
        print("\n🕒 Timeline:")
        for t in launcher.db.get_transitions(args.launch_id):
            detail = f" ({t['detail']})" if t['detail'] else ""
            print(f"   {t['created_at']} {t['from_state'] or '-'} -> {t['to_state']}{detail}")
        return

    launcher = TokenLauncher()
    orchestrator = launcher.orchestrator

    if args.command == 'launch':
        try:
            price = Decimal(args.price) if args.price else launcher.config.default_initial_price
        except InvalidOperation:
            print(f"❌ Invalid price: {args.price}")
            return
        logo, content_type = await launcher.load_logo(args.logo)
        request = LaunchRequest(
            token_name=args.name,
            token_symbol=args.symbol,
            creator_address=args.creator,
            tier=args.tier,
            logo=logo,
            logo_content_type=content_type,
            initial_price=price,
            description=args.description,
            website=args.website,
        )
        launch_id = orchestrator.start_launch(request)
        print(f"🚀 Launch {launch_id} created")
        if args.queue:
            return
        record = await orchestrator.drive_launch(launch_id)
        print_record(record)

    elif args.command == 'retry':
        print_record(await orchestrator.retry_launch(args.launch_id))

    elif args.command == 'cancel':
        print_record(orchestrator.cancel_launch(args.launch_id))

    elif args.command == 'worker':
        print(f"👷 Starting {args.workers} launch worker(s)")
        await launcher.run_workers(args.workers)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n👋 Launcher stopped by user")
    except LaunchError as e:
        print(f"❌ {e}")
        sys.exit(1)
