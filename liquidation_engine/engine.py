"""
Engine assembly.

Builds every component from Settings, injecting its own config model and
the shared repositories, clock, event bus and audit ledger. Collaborators
default to the simulated adapters (or the HTTP price feed when
`price_source_url` is set) and can be overridden.
"""

from dataclasses import dataclass

from liquidation_engine.adapters import (
    HttpPriceSource,
    InMemoryLedgerService,
    SimulatedComplianceProvider,
    SimulatedPriceSource,
    SimulatedSettlementRail,
)
from liquidation_engine.audit import AuditLedger
from liquidation_engine.compliance import ComplianceConfig, ComplianceOrchestrator
from liquidation_engine.config import Settings
from liquidation_engine.domain import Clock, utc_now
from liquidation_engine.eligibility import EligibilityRegistry, RollingLimitTracker
from liquidation_engine.execution import ExecutorConfig, TransactionExecutor
from liquidation_engine.interfaces import ComplianceProvider, LedgerService, PriceSource, SettlementRail
from liquidation_engine.logging import get_logger
from liquidation_engine.matching import LiquidityMatcher, MatcherConfig, ProviderRegistry
from liquidation_engine.orchestration import (
    ExpirySweeper,
    LiquidationOrchestrator,
    OrchestratorConfig,
    SweeperConfig,
)
from liquidation_engine.pricing import QuoteConfig, QuoteService
from liquidation_engine.runtime.event_bus import EventBus, get_event_bus
from liquidation_engine.storage import Repositories

logger = get_logger(__name__)


# =============================================================================
# Component configs
# =============================================================================


def quote_config(settings: Settings) -> QuoteConfig:
    return QuoteConfig(
        validity_minutes=settings.quote_validity_minutes,
        max_slippage_percent=settings.max_slippage_percent,
        min_confidence=settings.min_confidence,
        max_retries=settings.pricing_max_retries,
        timeout_s=settings.pricing_timeout_s,
        retry_base_delay_s=settings.retry_base_delay_s,
    )


def compliance_config(settings: Settings) -> ComplianceConfig:
    return ComplianceConfig(
        max_retries=settings.compliance_max_retries,
        timeout_s=settings.compliance_timeout_s,
        retry_base_delay_s=settings.retry_base_delay_s,
        enhanced_screening_threshold=settings.enhanced_screening_threshold,
        review_risk_score=settings.review_risk_score,
        review_window_hours=settings.review_window_hours,
    )


def matcher_config(settings: Settings) -> MatcherConfig:
    return MatcherConfig(
        ranking=list(settings.provider_ranking),
        poll_interval_seconds=settings.liquidity_poll_seconds,
    )


def executor_config(settings: Settings) -> ExecutorConfig:
    return ExecutorConfig(
        max_retries=settings.execution_max_retries,
        timeout_s=settings.execution_timeout_s,
        retry_base_delay_s=settings.retry_base_delay_s,
        platform_fee_percentage=settings.platform_fee_percentage,
        reversal_window_minutes=settings.reversal_window_minutes,
    )


def orchestrator_config(settings: Settings) -> OrchestratorConfig:
    return OrchestratorConfig(
        request_expiry_hours=settings.request_expiry_hours,
        liquidity_poll_seconds=settings.liquidity_poll_seconds,
    )


def sweeper_config(settings: Settings) -> SweeperConfig:
    return SweeperConfig(interval_seconds=settings.sweep_interval_seconds)


def default_price_source(settings: Settings) -> PriceSource:
    if settings.price_source_url:
        api_key = settings.price_source_api_key
        return HttpPriceSource(
            settings.price_source_url,
            timeout=settings.price_source_timeout_s,
            max_retries=settings.price_source_max_retries,
            backoff_base=settings.retry_base_delay_s,
            api_key=api_key.get_secret_value() if api_key is not None else None,
        )
    return SimulatedPriceSource()


# =============================================================================
# Engine
# =============================================================================


@dataclass
class LiquidationEngine:
    """All wired components of one engine instance."""

    settings: Settings
    repos: Repositories
    registry: EligibilityRegistry
    limits: RollingLimitTracker
    ledger: LedgerService
    price_source: PriceSource
    compliance_provider: ComplianceProvider
    rail: SettlementRail
    quotes: QuoteService
    compliance: ComplianceOrchestrator
    matcher: LiquidityMatcher
    providers: ProviderRegistry
    executor: TransactionExecutor
    orchestrator: LiquidationOrchestrator
    sweeper: ExpirySweeper
    event_bus: EventBus
    audit: AuditLedger

    async def start(self) -> None:
        await self.sweeper.start()

    async def stop(self) -> None:
        await self.sweeper.stop()
        await self.orchestrator.drain()
        await self.price_source.close()


def build_engine(
    settings: Settings,
    *,
    price_source: PriceSource | None = None,
    compliance_provider: ComplianceProvider | None = None,
    rail: SettlementRail | None = None,
    ledger: LedgerService | None = None,
    registry: EligibilityRegistry | None = None,
    clock: Clock = utc_now,
    event_bus: EventBus | None = None,
    audit: AuditLedger | None = None,
) -> LiquidationEngine:
    """Assemble an engine from settings, overriding any collaborator given."""
    repos = Repositories()
    event_bus = event_bus or get_event_bus()
    if audit is None:
        audit = AuditLedger(settings.audit_dir if settings.audit_enabled else None)
    price_source = price_source or default_price_source(settings)
    compliance_provider = compliance_provider or SimulatedComplianceProvider()
    rail = rail or SimulatedSettlementRail()
    ledger = ledger or InMemoryLedgerService()
    registry = registry or EligibilityRegistry(clock=clock)
    limits = RollingLimitTracker()

    quotes = QuoteService(price_source, repos.snapshots, quote_config(settings), clock, event_bus)
    compliance = ComplianceOrchestrator(
        compliance_provider,
        repos.checks,
        compliance_config(settings),
        clock,
        event_bus,
        audit,
    )
    matcher = LiquidityMatcher(
        repos.providers,
        repos.reservations,
        matcher_config(settings),
        clock,
        event_bus,
        audit,
    )
    executor = TransactionExecutor(
        rail,
        quotes,
        matcher,
        repos.providers,
        repos.transactions,
        executor_config(settings),
        clock,
        event_bus,
        audit,
    )
    orchestrator = LiquidationOrchestrator(
        repos,
        registry,
        limits,
        ledger,
        compliance,
        quotes,
        matcher,
        executor,
        orchestrator_config(settings),
        clock,
        event_bus,
        audit,
    )
    sweeper = ExpirySweeper(orchestrator, quotes, sweeper_config(settings), clock, event_bus)

    logger.info(
        "Liquidation engine assembled (env=%s, price source=%s)",
        settings.env.value,
        type(price_source).__name__,
    )
    return LiquidationEngine(
        settings=settings,
        repos=repos,
        registry=registry,
        limits=limits,
        ledger=ledger,
        price_source=price_source,
        compliance_provider=compliance_provider,
        rail=rail,
        quotes=quotes,
        compliance=compliance,
        matcher=matcher,
        providers=ProviderRegistry(repos.providers, clock),
        executor=executor,
        orchestrator=orchestrator,
        sweeper=sweeper,
        event_bus=event_bus,
        audit=audit,
    )
