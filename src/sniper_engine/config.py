"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sniper_engine.types import ExecutionConfig


class RunMode(str, Enum):
    """运行模式枚举。"""

    PAPER = "paper"  # 纸交易（只询价，不签名）
    LIVE = "live"  # 实盘


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


# 优先费档位（lamports）
PRIORITY_FEE_PRESETS: dict[str, int] = {
    "turbo": 5_000_000,
    "fast": 2_000_000,
    "normal": 1_000_000,
}


class Settings(BaseSettings):
    """系统配置设置。

    从环境变量和 .env 文件加载配置。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 运行模式 ====================
    mode: RunMode = Field(default=RunMode.PAPER, description="运行模式: paper 或 live")
    user_id: str = Field(default="local", min_length=1, description="持仓与审计日志的用户标识")

    # ==================== 外部服务 ====================
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        description="Solana RPC 地址",
    )
    jupiter_quote_url: str = Field(
        default="https://lite-api.jup.ag/swap/v1/quote",
        description="Jupiter 询价接口",
    )
    jupiter_swap_url: str = Field(
        default="https://lite-api.jup.ag/swap/v1/swap",
        description="Jupiter 交易构建接口",
    )
    jupiter_tokens_url: str = Field(
        default="https://lite-api.jup.ag/tokens/v1",
        description="Jupiter 代币元数据接口",
    )
    dexscreener_url: str = Field(
        default="https://api.dexscreener.com/latest/dex/tokens",
        description="DexScreener 流动性/价格接口",
    )
    helius_url: str = Field(default="https://api.helius.xyz", description="Helius API 地址")
    helius_api_key: str = Field(default="", description="Helius API Key")
    deployer_reputation_url: str = Field(
        default="",
        description="部署者信誉服务地址（为空则视为数据不可用）",
    )

    # ==================== 钱包 ====================
    wallet_private_key: str = Field(default="", description="实盘签名私钥（base58 或 JSON 数组）")

    # ==================== HTTP ====================
    http_timeout_sec: float = Field(default=8.0, gt=0, le=60, description="单次请求超时（秒）")
    http_max_attempts: int = Field(default=3, ge=1, le=6, description="瞬时网络错误最大尝试次数")
    http_retry_wait_min_sec: float = Field(default=0.5, ge=0, description="重试最小等待（秒）")
    http_retry_wait_max_sec: float = Field(default=4.0, ge=0, description="重试最大等待（秒）")

    # ==================== 交易参数 ====================
    buy_amount_sol: float = Field(default=0.1, gt=0, le=100, description="单笔买入金额（SOL）")
    slippage_pct: float = Field(default=15.0, gt=0, le=50, description="滑点容忍度（百分比）")
    priority: Literal["turbo", "fast", "normal"] = Field(default="normal", description="优先费档位")
    max_retries: int = Field(default=2, ge=0, le=5, description="询价/构建阶段的重试次数")
    take_profit_pct: float = Field(default=100.0, gt=0, description="止盈百分比")
    stop_loss_pct: float = Field(default=30.0, gt=0, le=100, description="止损百分比")
    quote_ttl_sec: float = Field(default=20.0, gt=0, le=120, description="报价有效期（秒）")
    default_sol_price_usd: float = Field(default=150.0, gt=0, description="SOL 价格兜底值（美元）")

    # ==================== 风控参数 ====================
    risk_penalty_threshold: int = Field(
        default=65,
        ge=0,
        le=300,
        description="累计扣分上限，超过即拒绝",
    )
    risk_check_timeout_sec: float = Field(default=6.0, gt=0, le=60, description="单项风控检查超时")
    risk_degraded_penalty: int = Field(default=10, ge=0, le=100, description="检查降级时的保守扣分")
    min_liquidity_usd: float = Field(default=5_000.0, ge=0, description="最低流动性（美元）")
    stress_liquidity_drop: float = Field(default=0.5, gt=0, lt=1, description="压力测试流动性撤出比例")
    stress_block_loss_pct: float = Field(default=40.0, gt=0, le=100, description="压力测试拦截线")
    stress_warn_loss_pct: float = Field(default=25.0, gt=0, le=100, description="压力测试警告线")
    cluster_block_pct: float = Field(default=40.0, gt=0, le=100, description="同源资金占比拦截线")

    # ==================== 观察窗口 ====================
    observation_enabled: bool = Field(default=True, description="是否启用执行前观察窗口")
    observation_delay_sec: float = Field(default=3.0, ge=0, le=30, description="观察等待时长")
    observation_abort_on_unstable: bool = Field(default=True, description="不稳定时是否放弃执行")
    high_liquidity_skip_usd: float = Field(default=50_000.0, ge=0, description="高流动性跳过观察阈值")
    max_liquidity_change_pct: float = Field(default=20.0, gt=0, description="流动性变化上限")
    max_quote_deviation_pct: float = Field(default=15.0, gt=0, description="报价偏离上限")

    # ==================== 编排器 ====================
    trade_cooldown_sec: float = Field(default=2.0, ge=0, le=60, description="两笔交易之间的冷却时间")
    fee_reserve_sol: float = Field(default=0.01, ge=0, description="手续费预留（SOL）")
    confirm_max_attempts: int = Field(default=30, ge=1, le=120, description="确认轮询最大次数")
    confirm_interval_sec: float = Field(default=1.0, gt=0, le=10, description="确认轮询间隔")
    monitor_enabled: bool = Field(default=True, description="是否启用买入后紧急监控")
    emergency_slippage_pct: float = Field(default=30.0, gt=0, le=50, description="紧急卖出滑点")

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )

    # ==================== 数据存储 ====================
    journal_dir: Path = Field(
        default=Path("data/journal"),
        description="审计日志与持仓存储目录",
    )

    @field_validator("journal_dir", mode="before")
    @classmethod
    def parse_journal_dir(cls, v: str | Path) -> Path:
        """将字符串转换为 Path 对象。"""
        return Path(v) if isinstance(v, str) else v

    def ensure_directories(self) -> None:
        """确保必要的目录存在。"""
        self.journal_dir.mkdir(parents=True, exist_ok=True)

    @property
    def is_paper_mode(self) -> bool:
        """是否为纸交易模式。"""
        return self.mode == RunMode.PAPER

    @property
    def is_live_mode(self) -> bool:
        """是否为实盘模式。"""
        return self.mode == RunMode.LIVE

    @property
    def priority_fee_lamports(self) -> int:
        """当前档位对应的优先费。"""
        return PRIORITY_FEE_PRESETS[self.priority]

    def execution_config(self) -> ExecutionConfig:
        """根据配置构造单次执行参数。"""
        return ExecutionConfig(
            buy_amount_sol=self.buy_amount_sol,
            slippage=self.slippage_pct / 100.0,
            priority_fee_lamports=self.priority_fee_lamports,
            max_retries=self.max_retries,
            take_profit_pct=self.take_profit_pct,
            stop_loss_pct=self.stop_loss_pct,
        )

    def validate_for_live(self) -> list[str]:
        """验证实盘模式的必要配置，返回缺失项列表。"""
        missing = []
        if not self.wallet_private_key:
            missing.append("WALLET_PRIVATE_KEY")
        if not self.solana_rpc_url:
            missing.append("SOLANA_RPC_URL")
        if not self.helius_api_key:
            missing.append("HELIUS_API_KEY")
        return missing


# 全局配置实例（延迟初始化）
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置。"""
    global _settings
    _settings = Settings()
    return _settings
