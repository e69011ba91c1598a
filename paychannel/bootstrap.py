"""
Startup wiring. build_core() is the single place the master seed and the encryption key
are loaded; everything else receives them (or what is built from them) explicitly.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

import httpx

from paychannel.chaininfo.client import ChainInfoClient
from paychannel.channels.allocator import AddressAllocator
from paychannel.channels.service import ChannelService
from paychannel.consolidation.planner import ConsolidationPlanner
from paychannel.core.config import settings as default_settings
from paychannel.keys.custody import KeyCustodyStore
from paychannel.keys.derivation import KeyDerivationEngine
from paychannel.keys.encryption import FernetKeyEncryptor, self_test
from paychannel.keys.seed import load_master_seed
from paychannel.pricing.engine import PricingEngine
from paychannel.pricing.feeds import PriceFeedClient

logger = logging.getLogger("paychannel.bootstrap")


@dataclass
class PaymentCore:
    session_factory: Any
    derivation: KeyDerivationEngine
    custody: KeyCustodyStore
    allocator: AddressAllocator
    pricing: PricingEngine
    planner: ConsolidationPlanner
    channels: ChannelService
    chain_info: ChainInfoClient
    http: httpx.AsyncClient

    async def aclose(self):
        await self.http.aclose()


def build_core(settings=default_settings, session_factory=None, http_client: Optional[httpx.AsyncClient] = None) -> PaymentCore:
    """Raises ConfigurationError when the seed or the encryption key is missing or invalid."""
    seed = load_master_seed(settings)
    encryptor = FernetKeyEncryptor.from_settings(settings)
    self_test(encryptor)

    if session_factory is None:
        from paychannel.db.session import AsyncSessionLocal
        session_factory = AsyncSessionLocal
    http = http_client or httpx.AsyncClient(timeout=float(settings.HTTP_TIMEOUT_SECONDS))

    derivation = KeyDerivationEngine(seed)
    custody = KeyCustodyStore(encryptor)
    allocator = AddressAllocator(
        derivation,
        custody,
        session_factory,
        cooldown=timedelta(days=settings.ADDRESS_COOLDOWN_DAYS),
        allow_placeholder_xmr=settings.XMR_PLACEHOLDER_ENABLED,
    )
    pricing = PricingEngine(
        PriceFeedClient(
            http,
            coingecko_base=settings.COINGECKO_BASE_URL,
            hive_api=settings.HIVE_API_URL,
            blockstream_api=settings.BLOCKSTREAM_API_URL,
        ),
        session_factory,
        stale_after=timedelta(seconds=settings.PRICING_STALE_AFTER_SECONDS),
        retention=timedelta(days=settings.PRICING_RETENTION_DAYS),
        refresh_interval=settings.PRICING_REFRESH_INTERVAL_SECONDS,
    )
    channels = ChannelService(
        allocator,
        pricing,
        session_factory,
        ttl=timedelta(hours=settings.CHANNEL_TTL_HOURS),
        memo_prefix=settings.MEMO_PREFIX,
    )
    if settings.XMR_PLACEHOLDER_ENABLED:
        logger.warning("XMR placeholder addresses are enabled; they are NOT valid Monero addresses")
    logger.info("Payment core ready (seed from %s)", seed.source)
    return PaymentCore(
        session_factory=session_factory,
        derivation=derivation,
        custody=custody,
        allocator=allocator,
        pricing=pricing,
        planner=ConsolidationPlanner(custody, session_factory),
        channels=channels,
        chain_info=ChainInfoClient(http, blockstream_api=settings.BLOCKSTREAM_API_URL),
        http=http,
    )
