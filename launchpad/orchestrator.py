"""
Launch orchestrator: drives a launch from metadata upload to a seeded pool.

Each step performs at most one external write. Progress is persisted before
and after every write so a launch can be resumed (or reconciled) after a
crash without minting twice or seeding liquidity twice.
"""

import asyncio
import logging
import os
import socket
import uuid
from datetime import datetime
from hashlib import sha256
from typing import Awaitable, Callable, Dict, List, Optional

from launchpad.calculators import allocate, build_curve, price_to_bin
from launchpad.config import LaunchConfig
from launchpad.database import LaunchDatabase
from launchpad.errors import (
    CollaboratorError,
    ErrorKind,
    InputError,
    InvalidLaunchTransition,
    LaunchBusy,
    LaunchNotFound,
)
from launchpad.models import (
    CANCELLABLE_STATES,
    LaunchFailure,
    LaunchRecord,
    LaunchRequest,
    LaunchState,
)
from launchpad.services.base import MetadataPublisher, PoolProvisioner, ProvisionReceipt, TokenMinter

# Step run from each state, named as recorded in the attempts table
STEP_NAMES = {
    LaunchState.CREATED: 'publish_metadata',
    LaunchState.METADATA_PUBLISHED: 'mint',
    LaunchState.TOKEN_MINTED: 'create_pool',
    LaunchState.POOL_PROVISIONED: 'seed_liquidity',
    LaunchState.LIQUIDITY_CONFIGURED: 'activate_protection',
    LaunchState.ANTI_SNIPER_ACTIVATED: 'complete',
}

RECONCILE_NAMES = {
    'mint': 'find_mint',
    'create_pool': 'find_pool',
    'seed_liquidity': 'check_liquidity',
}


class LaunchOrchestrator:
    """Runs launches through the state machine and owns their records"""

    def __init__(self, config: LaunchConfig, db: LaunchDatabase, publisher: MetadataPublisher,
                 minter: TokenMinter, provisioner: PoolProvisioner,
                 sleep: Optional[Callable[[float], Awaitable]] = None, owner_id: Optional[str] = None):
        self.config = config
        self.db = db
        self.publisher = publisher
        self.minter = minter
        self.provisioner = provisioner
        self.sleep = sleep or asyncio.sleep
        self.owner_id = owner_id or f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"
        self.launch_queue: asyncio.Queue = asyncio.Queue()
        self.driving: Dict[str, str] = {}  # launch_id -> lease token held by this process
        self.logger = logging.getLogger('launchpad')

        self._steps = {
            LaunchState.CREATED: self._publish_metadata,
            LaunchState.METADATA_PUBLISHED: self._mint_token,
            LaunchState.TOKEN_MINTED: self._create_pool,
            LaunchState.POOL_PROVISIONED: self._seed_liquidity,
            LaunchState.LIQUIDITY_CONFIGURED: self._activate_protection,
            LaunchState.ANTI_SNIPER_ACTIVATED: self._complete,
        }

    # Public surface

    def start_launch(self, request: LaunchRequest) -> str:
        """
        Validate ``request``, persist a Created record and queue it for a worker.

        Invalid requests raise InvalidLaunchRequest and leave no record. Every
        calculation the later steps need (allocation, active bin, liquidity
        curve, mint address) is done here, so a calculator input error fails
        the launch at Created before anything external is touched.
        """
        request.validate(self.config.tiers, self.config.min_initial_price, self.config.max_initial_price)
        tier = self.config.tier(request.tier)

        launch_id = uuid.uuid4().hex
        record = LaunchRecord(
            launch_id=launch_id,
            request=request,
            tier_config=tier,
            mint_salt='0x' + sha256(launch_id.encode()).hexdigest(),
        )

        try:
            record.allocation = allocate(self.config.total_supply, self.config.decimals, self.config.creator_share)
            record.active_bin = price_to_bin(request.initial_price, tier.step_bps)
            record.distribution = build_curve(record.active_bin, self.config.curve_radius,
                                              record.allocation.liquidity_amount, self.config.curve_decay)
        except InputError as e:
            self.db.save_launch(record)
            self.db.record_transition(launch_id, None, LaunchState.CREATED)
            self._fail(record, 'plan', 'input', str(e))
            return launch_id

        record.predicted_mint_address = self.minter.predict_address(record.mint_salt)
        self.db.save_launch(record)
        self.db.record_transition(launch_id, None, LaunchState.CREATED)
        self.logger.info(f"Launch {launch_id} created: {request.token_symbol} ({request.tier}), "
                         f"active bin {record.active_bin}, mint address {record.predicted_mint_address}")

        self.launch_queue.put_nowait(launch_id)
        return launch_id

    def get_launch_status(self, launch_id: str) -> LaunchRecord:
        record = self.db.load_launch(launch_id)
        if record is None:
            raise LaunchNotFound(f"No launch with id {launch_id}")
        return record

    async def retry_launch(self, launch_id: str) -> LaunchRecord:
        """Re-drive a failed launch from the last state it completed"""
        record = self.get_launch_status(launch_id)
        if record.state is not LaunchState.FAILED:
            raise InvalidLaunchTransition(f"Launch {launch_id} is {record.state.value}; only failed launches can be retried")
        if record.error and record.error.kind == 'input':
            raise InvalidLaunchTransition(f"Launch {launch_id} failed on invalid input and cannot be retried: "
                                          f"{record.error.message}")
        owner = self.driving.get(launch_id) or self.db.lease_owner(launch_id)
        if owner:
            raise LaunchBusy(f"Launch {launch_id} is being driven by {owner}")

        resume_at = record.failed_at
        record.state = resume_at
        record.failed_at = None
        record.error = None
        self.db.save_launch(record)
        self.db.record_transition(launch_id, LaunchState.FAILED, resume_at, "retry requested")
        self.logger.info(f"Retrying launch {launch_id} from {resume_at.value}")

        return await self.drive_launch(launch_id)

    def cancel_launch(self, launch_id: str) -> LaunchRecord:
        """Cancel a launch that has not minted yet"""
        record = self.get_launch_status(launch_id)
        if record.state not in CANCELLABLE_STATES:
            raise InvalidLaunchTransition(f"Launch {launch_id} is {record.state.value} and can no longer be cancelled")

        if self.db.lease_owner(launch_id):
            # The driver checks the flag before minting
            self.db.request_cancel(launch_id)
            self.logger.info(f"Cancellation requested for running launch {launch_id}")
            return self.get_launch_status(launch_id)

        self._cancel(record)
        return record

    def recover_interrupted(self) -> List[str]:
        """Queue non-terminal launches no driver holds, e.g. after a restart"""
        launch_ids = self.db.list_interrupted()
        for launch_id in launch_ids:
            self.launch_queue.put_nowait(launch_id)
        if launch_ids:
            self.logger.info(f"Recovered {len(launch_ids)} interrupted launch(es)")
        return launch_ids

    async def launch_worker(self):
        """Worker that processes the launch queue"""
        self.logger.info(f"Launch worker ready ({self.owner_id})")

        while True:
            launch_id = await self.launch_queue.get()
            try:
                queue_size = self.launch_queue.qsize()
                if queue_size > 0:
                    self.logger.info(f"Processing launch {launch_id} (queue: {queue_size} pending)")
                await self.drive_launch(launch_id)
            except LaunchBusy as e:
                self.logger.warning(str(e))
            except Exception as e:
                self.logger.error(f"Worker error on launch {launch_id}: {e}", exc_info=True)
            finally:
                self.launch_queue.task_done()

    async def drive_launch(self, launch_id: str) -> LaunchRecord:
        """Run one launch until it reaches a terminal state"""
        if launch_id in self.driving:
            raise LaunchBusy(f"Launch {launch_id} is already being driven by this process")

        record = self.get_launch_status(launch_id)
        if record.is_terminal:
            return record

        # One lease token per drive, so two workers in this process never share a lease
        lease = f"{self.owner_id}-{uuid.uuid4().hex[:8]}"
        self.driving[launch_id] = lease
        try:
            while not record.is_terminal:
                self._renew_lease(record)

                if record.state in CANCELLABLE_STATES and self._cancel_requested(record):
                    self._cancel(record)
                    break

                step_name = STEP_NAMES[record.state]
                try:
                    await self._steps[record.state](record)
                except LaunchBusy:
                    raise
                except CollaboratorError as e:
                    self._fail(record, step_name, e.kind.value, e.args[0])
                except InputError as e:
                    self._fail(record, step_name, 'input', str(e))
                except Exception as e:
                    self.logger.error(f"Unexpected error in {step_name} for launch {launch_id}: {e}", exc_info=True)
                    self._fail(record, step_name, 'internal', str(e))
        finally:
            self.db.release_lease(launch_id, lease)
            del self.driving[launch_id]

        return record

    # State bookkeeping

    def _advance(self, record: LaunchRecord, state: LaunchState, detail: Optional[str] = None):
        previous = record.state
        record.state = state
        record.pending_step = None
        if state is LaunchState.COMPLETED:
            record.completed_at = datetime.now()
        self.db.save_launch(record)
        self.db.record_transition(record.launch_id, previous, state, detail)
        self.logger.info(f"Launch {record.launch_id}: {previous.value} -> {state.value}"
                         + (f" ({detail})" if detail else ""))

    def _fail(self, record: LaunchRecord, step: str, kind: str, message: str):
        # pending_step is kept so a retry reconciles an unfinished write first
        previous = record.state
        record.state = LaunchState.FAILED
        record.failed_at = previous
        record.error = LaunchFailure(step=step, kind=kind, message=message)
        self.db.save_launch(record)
        self.db.record_transition(record.launch_id, previous, LaunchState.FAILED, f"{step}: [{kind}] {message}")

        self.logger.error(f"Launch {record.launch_id} failed at {previous.value} during {step}: [{kind}] {message}")
        if record.token_exists:
            self.logger.error(f"Token {record.mint_address} exists on chain for failed launch {record.launch_id}")

    def _cancel(self, record: LaunchRecord):
        previous = record.state
        record.state = LaunchState.CANCELLED
        record.cancel_requested = True
        self.db.save_launch(record)
        self.db.record_transition(record.launch_id, previous, LaunchState.CANCELLED)
        self.logger.info(f"Launch {record.launch_id} cancelled at {previous.value}")

    def _renew_lease(self, record: LaunchRecord):
        """Extend this drive's lease; raises LaunchBusy when another driver took it over"""
        launch_id = record.launch_id
        if not self.db.acquire_lease(launch_id, self.driving[launch_id], self.config.lease_ttl):
            raise LaunchBusy(f"Launch {launch_id} is being driven by {self.db.lease_owner(launch_id)}")

    def _cancel_requested(self, record: LaunchRecord) -> bool:
        stored = self.db.load_launch(record.launch_id)
        return record.cancel_requested or (stored is not None and stored.cancel_requested)

    def _record_attempt(self, record: LaunchRecord, step: str, attempt: int, outcome: str,
                        error: Optional[str] = None):
        self.db.record_attempt(record.launch_id, step, attempt, outcome, error)
        if error:
            self.logger.warning(f"Launch {record.launch_id} {step} attempt {attempt}: {error}")
        else:
            self.logger.debug(f"Launch {record.launch_id} {step} attempt {attempt}: {outcome}")

    # Retry and reconciliation

    async def _reconcile(self, record: LaunchRecord, step: str, reconcile):
        """Read back whether the write for ``step`` already happened; None when it did not"""
        check = RECONCILE_NAMES[step]
        policy = self.config.retry

        for attempt in range(1, policy.max_attempts + 1):
            self._renew_lease(record)
            try:
                found = await reconcile()
            except CollaboratorError as e:
                self._record_attempt(record, check, attempt, e.kind.value, str(e))
                if e.kind is ErrorKind.REJECTED or attempt >= policy.max_attempts:
                    raise
                await self.sleep(policy.delay(attempt))
                continue

            self._record_attempt(record, check, attempt, 'missing' if found is None else 'found')
            if found is not None:
                self.logger.info(f"Launch {record.launch_id}: {step} already applied, adopting existing result")
            return found

    async def _write(self, record: LaunchRecord, step: str, operation, reconcile=None,
                     reconcile_on_transient: bool = False):
        """
        Perform one external write with bounded retries.

        The pending marker is persisted before the first call. When ``reconcile``
        is given, it is consulted before writing if an earlier run left the
        marker behind, and before any retry that follows an ambiguous failure
        (or a transient one, with ``reconcile_on_transient``). A rejection that
        follows any failed attempt is checked the same way, since a send that
        looked like it failed may still have landed. The lease is renewed
        before every attempt.
        """
        if reconcile is not None and record.pending_step == step:
            found = await self._reconcile(record, step, reconcile)
            if found is not None:
                return found

        record.pending_step = step
        self.db.save_launch(record)

        policy = self.config.retry
        attempt = 0
        while True:
            attempt += 1
            self._renew_lease(record)
            try:
                result = await operation()
            except CollaboratorError as e:
                self._record_attempt(record, step, attempt, e.kind.value, str(e))

                if e.kind is ErrorKind.REJECTED:
                    if attempt > 1 and reconcile is not None:
                        found = await self._reconcile(record, step, reconcile)
                        if found is not None:
                            return found
                    raise
                if attempt >= policy.max_attempts:
                    raise

                await self.sleep(policy.delay(attempt))

                if reconcile is not None and (e.kind is ErrorKind.AMBIGUOUS or reconcile_on_transient):
                    found = await self._reconcile(record, step, reconcile)
                    if found is not None:
                        return found
                continue

            self._record_attempt(record, step, attempt, 'success')
            return result

    # Steps

    async def _publish_metadata(self, record: LaunchRecord):
        request = record.request
        allocation = record.allocation
        attributes = {
            'name': request.token_name,
            'symbol': request.token_symbol,
            'description': request.description,
            'website': request.website,
            'supply': allocation.total_supply,
            'decimals': allocation.decimals,
            'tier': record.tier_config.name,
            'creator': request.creator_address,
        }

        result = await self._write(
            record, 'publish_metadata',
            lambda: self.publisher.publish(request.logo, request.logo_content_type, attributes))

        record.metadata_locator = result.locator
        record.metadata_hash = result.content_hash
        self._advance(record, LaunchState.METADATA_PUBLISHED, result.locator)

    async def _mint_token(self, record: LaunchRecord):
        request = record.request
        allocation = record.allocation

        async def reconcile():
            return await self.minter.find_mint(record.predicted_mint_address)

        result = await self._write(
            record, 'mint',
            lambda: self.minter.mint(
                request.token_name,
                request.token_symbol,
                record.metadata_locator,
                request.creator_address,
                allocation.creator_amount,
                allocation.liquidity_amount,
                allocation.decimals,
                record.mint_salt,
            ),
            reconcile)

        record.mint_address = result.mint_address
        record.mint_receipt = result.mint_receipt
        self._advance(record, LaunchState.TOKEN_MINTED, result.mint_address)

    async def _create_pool(self, record: LaunchRecord):
        tier = record.tier_config
        quote = self.config.quote_token_address

        async def reconcile():
            return await self.provisioner.find_pool(record.mint_address, quote, tier.step_bps)

        result = await self._write(
            record, 'create_pool',
            lambda: self.provisioner.create_pool(record.mint_address, quote, tier.step_bps,
                                                 tier.base_fee_bps, record.active_bin),
            reconcile, reconcile_on_transient=True)

        record.pool_address = result.pool_address
        record.pool_receipt = result.receipt
        self._advance(record, LaunchState.POOL_PROVISIONED, result.pool_address)

    async def _seed_liquidity(self, record: LaunchRecord):
        async def reconcile():
            if await self.provisioner.has_liquidity(record.pool_address):
                return ProvisionReceipt(receipt=None)
            return None

        result = await self._write(
            record, 'seed_liquidity',
            lambda: self.provisioner.seed_liquidity(record.pool_address, record.distribution),
            reconcile, reconcile_on_transient=True)

        record.liquidity_receipt = result.receipt
        self._advance(record, LaunchState.LIQUIDITY_CONFIGURED,
                      f"{len(record.distribution.bins)} bins around {record.active_bin}")

    async def _activate_protection(self, record: LaunchRecord):
        tier = record.tier_config
        if not tier.anti_sniper:
            await self._complete(record)
            return

        max_buy = self.config.max_buy_per_tx * 10 ** record.allocation.decimals
        result = await self._write(
            record, 'activate_protection',
            lambda: self.provisioner.activate_protection(record.pool_address, tier.activation_delay, max_buy))

        record.protection_receipt = result.receipt
        self._advance(record, LaunchState.ANTI_SNIPER_ACTIVATED,
                      f"delay {tier.activation_delay}s, max buy {self.config.max_buy_per_tx}")

    async def _complete(self, record: LaunchRecord):
        self._advance(record, LaunchState.COMPLETED)
