"""CLI 入口模块 - Sniper Engine 命令行接口。"""

import asyncio
import sys
from datetime import datetime
from pathlib import Path

import click

from sniper_engine import __version__
from sniper_engine.config import Settings, get_settings
from sniper_engine.errors import SniperError
from sniper_engine.pipeline import build_engine, initial_quote, run_feed
from sniper_engine.types import Candidate, FeedRunResult, RiskContext
from sniper_engine.utils.logging import get_logger, setup_logging


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """Sniper Engine - 带风控闸门的 Solana 新币狙击执行引擎。

    发现源 → 风控闸门 → 观察窗口 → 单飞执行 → 买入后紧急监控。
    """
    if version:
        click.echo(f"sniper-engine version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _prepare(dry_run: bool) -> Settings:
    """初始化日志与配置，实盘模式下校验必要配置。"""
    setup_logging()
    logger = get_logger("sniper_engine.main")
    settings = get_settings()

    # 确保目录存在
    settings.ensure_directories()

    # 验证配置
    if settings.is_live_mode and not dry_run:
        missing = settings.validate_for_live()
        if missing:
            logger.error(
                "missing_required_config",
                missing_keys=missing,
                hint="请在 .env 文件中配置必要的密钥",
            )
            sys.exit(1)
    return settings


def _log_result(event: str, result: FeedRunResult, **extra: object) -> None:
    get_logger("sniper_engine.main").info(
        event,
        status=result.status,
        elapsed_ms=round(result.elapsed_ms, 2),
        admitted=len(result.admitted),
        rejected=len(result.rejected),
        outcomes=len(result.outcomes),
        warnings=result.warnings,
        **extra,
    )


@cli.command()
@click.option(
    "--feed",
    "feed_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="候选代币 JSONL 文件",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="试运行模式，只做风控与观察，不签名",
)
def once(feed_path: Path, dry_run: bool) -> None:
    """处理一次候选文件。

    读取候选 → 风控闸门 → 观察窗口 → 排队执行 → 等待监控结束
    """
    settings = _prepare(dry_run)
    logger = get_logger("sniper_engine.main")

    logger.info(
        "starting_single_run",
        mode=settings.mode.value,
        feed=str(feed_path),
        dry_run=dry_run,
        timestamp=datetime.now().isoformat(),
    )

    try:
        result = asyncio.run(run_feed(settings, feed_path, dry_run=dry_run))
        _log_result("run_completed", result)
        if result.status == "failed":
            sys.exit(1)

    except KeyboardInterrupt:
        logger.info("run_interrupted", message="User interrupted")
        sys.exit(0)


async def _watch(settings: Settings, feed_path: Path, interval_sec: float, dry_run: bool) -> None:
    """同一个引擎循环处理候选文件，去重集合跨轮次保留。"""
    logger = get_logger("sniper_engine.main")
    engine = build_engine(settings)
    iteration = 0
    try:
        while True:
            iteration += 1
            logger.info(
                "watch_iteration_start",
                iteration=iteration,
                timestamp=datetime.now().isoformat(),
            )
            result = await run_feed(settings, feed_path, dry_run=dry_run, engine=engine)
            _log_result("watch_iteration_completed", result, iteration=iteration)

            # 等待下一次循环
            await asyncio.sleep(interval_sec)
    finally:
        await engine.monitors.shutdown()
        await engine.aclose()


@cli.command()
@click.option(
    "--feed",
    "feed_path",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
    help="候选代币 JSONL 文件（每轮重新读取）",
)
@click.option(
    "--interval-sec",
    "-i",
    type=float,
    default=10.0,
    help="轮询间隔（秒）",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="试运行模式，只做风控与观察，不签名",
)
def watch(feed_path: Path, interval_sec: float, dry_run: bool) -> None:
    """循环处理候选文件。

    每隔指定时间重新读取候选文件，已尝试过的代币不会重复执行。
    使用 Ctrl+C 停止。
    """
    settings = _prepare(dry_run)
    logger = get_logger("sniper_engine.main")

    logger.info(
        "starting_watch",
        mode=settings.mode.value,
        feed=str(feed_path),
        interval_sec=interval_sec,
        dry_run=dry_run,
    )

    try:
        asyncio.run(_watch(settings, feed_path, interval_sec, dry_run))
    except KeyboardInterrupt:
        logger.info("watch_stopped", message="User stopped watch")
        sys.exit(0)


async def _admit(settings: Settings, address: str) -> int:
    engine = build_engine(settings)
    try:
        try:
            snapshot = await engine.market.token_snapshot(address)
        except SniperError as exc:
            click.echo(f"[ERROR] Pool data unavailable: {exc}")
            return 1
        candidate = Candidate(
            address=address,
            symbol=snapshot.symbol or "UNKNOWN",
            name=snapshot.name or "Unknown",
            liquidity_usd=snapshot.liquidity_usd or 0.0,
            price_usd=snapshot.price_usd,
        )
        quote = await initial_quote(engine, candidate)
        context = RiskContext(
            buy_amount_sol=settings.buy_amount_sol,
            sol_price_usd=await engine.market.sol_price_usd(),
            current_price_impact_pct=quote.price_impact_pct if quote is not None else None,
        )
        decision = await engine.gate.evaluate(candidate, context)
    finally:
        await engine.aclose()

    verdict = "[ADMIT]" if decision.admitted else "[REJECT]"
    click.echo(f"{verdict} {candidate.symbol} ({address})")
    click.echo(f"   Liquidity: ${candidate.liquidity_usd:,.0f}")
    click.echo(f"   Penalty: {decision.total_penalty} / {decision.threshold}")
    if decision.hard_blocked_by:
        click.echo(f"   Hard blocked by: {', '.join(decision.hard_blocked_by)}")
    for r in decision.results:
        marker = "[OK]" if r.passed else "[FAIL]"
        click.echo(f"   {marker} {r.rule} (+{r.penalty}): {r.reason}")
    return 0 if decision.admitted else 2


@cli.command()
@click.argument("address")
def admit(address: str) -> None:
    """对单个代币运行风控闸门并打印决策。"""
    settings = _prepare(dry_run=True)
    sys.exit(asyncio.run(_admit(settings, address)))


@cli.command()
def status() -> None:
    """显示系统状态和配置摘要。"""
    setup_logging()
    settings = get_settings()

    click.echo("=" * 50)
    click.echo("Sniper Engine - Status")
    click.echo("=" * 50)
    click.echo()

    # 运行模式
    mode_marker = "[PAPER]" if settings.is_paper_mode else "[LIVE]"
    mode_text = "Paper (risk + observation only)" if settings.is_paper_mode else "Live Trading"
    click.echo(f"{mode_marker} Mode: {mode_text}")
    click.echo(f"   User: {settings.user_id}")
    click.echo()

    # 外部服务状态
    click.echo("[Services]")
    click.echo(f"   Solana RPC: {settings.solana_rpc_url}")
    click.echo(f"   Jupiter quote: {settings.jupiter_quote_url}")
    helius_status = "[OK] Configured" if settings.helius_api_key else "[--] Not configured"
    deployer_status = "[OK] Configured" if settings.deployer_reputation_url else "[--] Not configured"
    wallet_status = "[OK] Configured" if settings.wallet_private_key else "[--] Not configured"
    click.echo(f"   Helius API: {helius_status}")
    click.echo(f"   Deployer reputation: {deployer_status}")
    click.echo(f"   Wallet key: {wallet_status}")
    click.echo()

    # 交易参数
    click.echo("[Trade Parameters]")
    click.echo(f"   Buy amount: {settings.buy_amount_sol} SOL")
    click.echo(f"   Slippage: {settings.slippage_pct}%")
    click.echo(f"   Priority: {settings.priority} ({settings.priority_fee_lamports} lamports)")
    click.echo(f"   Take profit / Stop loss: {settings.take_profit_pct}% / {settings.stop_loss_pct}%")
    click.echo()

    # 风控参数
    click.echo("[Risk Parameters]")
    click.echo(f"   Penalty threshold: {settings.risk_penalty_threshold}")
    click.echo(f"   Min liquidity: ${settings.min_liquidity_usd:,.0f}")
    click.echo(f"   Cluster block: {settings.cluster_block_pct}%")
    click.echo(
        f"   Stress test: {settings.stress_liquidity_drop:.0%} drop, "
        f"block {settings.stress_block_loss_pct}% / warn {settings.stress_warn_loss_pct}%"
    )
    observation = f"{settings.observation_delay_sec}s" if settings.observation_enabled else "disabled"
    click.echo(f"   Observation window: {observation}")
    click.echo(f"   Post-entry monitor: {'enabled' if settings.monitor_enabled else 'disabled'}")
    click.echo()

    # 日志配置
    click.echo("[Logging]")
    click.echo(f"   Log level: {settings.log_level}")
    click.echo(f"   Log format: {settings.log_format.value}")
    click.echo(f"   Journal dir: {settings.journal_dir}")
    click.echo()

    # 验证状态
    if settings.is_live_mode:
        missing = settings.validate_for_live()
        if missing:
            click.echo("[ERROR] Live mode configuration incomplete, missing:")
            for key in missing:
                click.echo(f"   - {key}")
        else:
            click.echo("[OK] Live mode configuration complete")
    else:
        click.echo("[INFO] Paper mode does not sign transactions")

    click.echo()
    click.echo("=" * 50)


@cli.command()
def check() -> None:
    """检查系统依赖和配置。"""
    setup_logging()
    logger = get_logger("sniper_engine.main")

    click.echo("Checking system dependencies...")
    click.echo()

    all_ok = True

    # 检查必要的包
    packages = [
        ("pydantic", "Configuration validation"),
        ("pydantic_settings", "Settings loading"),
        ("httpx", "HTTP client"),
        ("structlog", "Structured logging"),
        ("click", "CLI framework"),
        ("tenacity", "Retry mechanism"),
        ("solders", "Solana keypairs and transactions"),
    ]

    for pkg_name, desc in packages:
        try:
            __import__(pkg_name)
            click.echo(f"  [OK] {pkg_name} - {desc}")
        except ImportError:
            click.echo(f"  [MISSING] {pkg_name} - {desc}")
            all_ok = False

    click.echo()

    # 检查配置文件
    env_file = Path(".env")
    if env_file.exists():
        click.echo("  [OK] .env configuration file exists")
    else:
        click.echo("  [WARN] .env file not found (using defaults)")

    click.echo()

    if all_ok:
        click.echo("[OK] All dependency checks passed")
    else:
        click.echo("[ERROR] Some dependencies missing. Run: pip install -e .")

    logger.info("dependency_check_completed", all_ok=all_ok)


# 支持 python -m sniper_engine.main 调用
if __name__ == "__main__":
    cli()
