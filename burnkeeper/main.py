"""
Entry point wiring all components.

    python -m burnkeeper.main            # run the schedulers until SIGINT/SIGTERM
    python -m burnkeeper.main reconcile  # run one tick of a job and exit
"""

from __future__ import annotations

import asyncio
import inspect
import os
import signal
import sys
from dataclasses import dataclass
from typing import Any, Optional

from prometheus_client import start_http_server

from burnkeeper.config.config import Settings
from burnkeeper.config.schedule import load_schedule
from burnkeeper.core.utils import load_object
from burnkeeper.execution.burn_executor import BurnExecutor, BurnExecutorConfig
from burnkeeper.execution.eligibility import EligibilityEvaluator
from burnkeeper.execution.gateway import AsyncLedgerGateway, BurnMode, LedgerConnection
from burnkeeper.execution.retry import RetryController
from burnkeeper.infra.logging_cfg import LOGGER_NAME, WARNING, build_logger, log_event
from burnkeeper.market.valuation import ValuationCache, ValuationFeed
from burnkeeper.metrics.projector import MetricsProjector
from burnkeeper.monitoring.alerting import AlertConfig, AlertManager
from burnkeeper.monitoring.metrics_rich import BurnMetrics
from burnkeeper.orchestrator.lifecycle import LifecycleConfig, LifecycleOrchestrator
from burnkeeper.orchestrator.reconciliation import ReconciliationConfig, ReconciliationEngine
from burnkeeper.orchestrator.scheduler import JobScheduler
from burnkeeper.state.journal import BurnJournal
from burnkeeper.state.records import LedgerOfRecord

log = build_logger(
    LOGGER_NAME,
    level=os.getenv("BURN_LOG_LEVEL", "INFO").upper(),
    file_path=os.getenv("BURN_LOG_FILE", "burnkeeper.log") or None,
)


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class Runtime:
    cfg: Settings
    gateway: AsyncLedgerGateway
    records: LedgerOfRecord
    journal: BurnJournal
    projector: MetricsProjector
    orchestrator: LifecycleOrchestrator
    reconciliation: ReconciliationEngine
    scheduler: JobScheduler
    alerts: AlertManager
    valuation_feed: Optional[ValuationFeed]

    async def close(self) -> None:
        await self.alerts.close()
        if self.valuation_feed is not None:
            await self.valuation_feed.close()
        await self.journal.close()
        await self.gateway.close()


async def build_runtime(cfg: Settings) -> Runtime:
    if not cfg.gateway_factory:
        raise ValueError("BURN_GATEWAY_FACTORY must name a 'module:callable' returning a LedgerConnection")
    connection: LedgerConnection = await _resolve(load_object(cfg.gateway_factory)(cfg))
    burn_mode = BurnMode(cfg.burn_mode)
    gateway = AsyncLedgerGateway(
        connection.client,
        rpc_timeout=cfg.rpc_timeout_sec,
        settlement_timeout=cfg.settlement_timeout_sec,
        burn_mode=burn_mode,
    )
    venue = await _resolve(load_object(cfg.venue_factory)(cfg)) if cfg.venue_factory else None

    metrics = BurnMetrics()
    if cfg.metrics_port:
        start_http_server(cfg.metrics_port, registry=metrics.get_registry())

    alerts = AlertManager(AlertConfig(
        webhook_url=cfg.alert_webhook_url,
        webhook_type=cfg.alert_webhook_type,
        enabled=cfg.alert_enabled,
    ))

    records = LedgerOfRecord(cfg.state_dir, fsync=cfg.journal_fsync)
    await records.load()
    await records.seed_milestones(load_schedule(cfg.schedule_path), cfg.initial_supply)

    journal = BurnJournal(cfg.state_dir, fsync=cfg.journal_fsync)
    await journal.initialize()

    projector = MetricsProjector(records, cfg.initial_supply, cfg.initial_reserve_pct)
    reserve_balance: Optional[float] = None
    try:
        reserve_balance = await gateway.get_balance(connection.reserve_signer.address, cfg.asset)
    except Exception as exc:
        log_event(log, "reserve_balance_unavailable", level=WARNING, error=str(exc))
    await projector.ensure_initial_snapshot(reserve_balance)

    feed: Optional[ValuationFeed] = None
    if cfg.valuation_url:
        feed = ValuationFeed(
            cfg.valuation_url,
            field=cfg.valuation_field,
            cache=ValuationCache(cfg.valuation_ttl_sec, cfg.valuation_max_stale_sec),
            timeout=cfg.rpc_timeout_sec,
            on_valuation=metrics.valuation.set,
        )

    executor = BurnExecutor(gateway, BurnExecutorConfig(cfg.default_decimals, burn_mode))
    retry = RetryController(
        base_delay=cfg.retry_base_delay_sec,
        max_attempts=cfg.retry_max_attempts,
        on_retry=lambda kind: metrics.retries.labels(error_kind=kind.label).inc(),
    )
    orchestrator = LifecycleOrchestrator(
        records=records,
        executor=executor,
        retry=retry,
        gateway=gateway,
        projector=projector,
        journal=journal,
        reserve_signer=connection.reserve_signer,
        operating_signer=connection.operating_signer,
        valuation_feed=feed,
        venue=venue,
        eligibility=EligibilityEvaluator(cfg.reward_threshold),
        alerts=alerts,
        metrics=metrics,
        config=LifecycleConfig(
            asset=cfg.asset,
            initial_supply=cfg.initial_supply,
            reward_threshold=cfg.reward_threshold,
            buy_input_ratio=cfg.buy_input_ratio,
            slippage_buffer=cfg.slippage_buffer,
            max_context_refreshes=cfg.max_context_refreshes,
        ),
    )
    reconciliation = ReconciliationEngine(
        orchestrator,
        alerts=alerts,
        config=ReconciliationConfig(
            orphan_grace_sec=cfg.orphan_grace_sec,
            reserve_drift_tolerance=cfg.reserve_drift_tolerance,
        ),
    )

    scheduler = JobScheduler(orchestrator=orchestrator, metrics=metrics)
    if feed is not None:
        scheduler.add_job("milestone", cfg.milestone_interval_sec, orchestrator.run_milestone_tick)
    else:
        log_event(log, "milestone_job_disabled", level=WARNING, reason="BURN_VALUATION_URL not set")
    if venue is not None:
        scheduler.add_job("buyback", cfg.buyback_interval_sec, orchestrator.run_buyback_cycle)
    else:
        log_event(log, "buyback_job_disabled", level=WARNING, reason="BURN_VENUE_FACTORY not set")
    scheduler.add_job("reconcile", cfg.reconcile_interval_sec, reconciliation.run_sweep)

    return Runtime(
        cfg=cfg,
        gateway=gateway,
        records=records,
        journal=journal,
        projector=projector,
        orchestrator=orchestrator,
        reconciliation=reconciliation,
        scheduler=scheduler,
        alerts=alerts,
        valuation_feed=feed,
    )


async def main(argv: Optional[list] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    cfg = Settings.load()
    runtime = await build_runtime(cfg)

    if argv:
        job = argv[0]
        try:
            result = await runtime.scheduler.run_once(job)
            log_event(log, "run_once_finished", job=job, result=repr(result))
        except KeyError:
            log_event(log, "unknown_job", level=WARNING, job=job, jobs=list(runtime.scheduler.jobs))
            return 2
        finally:
            await runtime.close()
        return 0

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def stop_all() -> None:
        # Let the scheduler finish in-flight burns before exiting
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_all)
        except NotImplementedError:
            pass

    await runtime.scheduler.start()
    log_event(log, "startup", asset=cfg.asset, jobs=list(runtime.scheduler.jobs), state_dir=cfg.state_dir)
    await runtime.alerts.alert_startup(asset=cfg.asset, burn_mode=cfg.burn_mode)

    try:
        await stop_event.wait()
        log.info("Shutdown signal received, waiting for in-flight burns...")
    finally:
        await runtime.scheduler.stop()
        await runtime.alerts.alert_shutdown("signal_received")
        await runtime.close()
        log.info("Shutdown complete")
    return 0


def run() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    run()
