"""Configuration module for loading project settings and environment variables.

API keys and tuning knobs are resolved once at process start into an
immutable :class:`Settings` instance that is handed to each provider's
constructor. Business code never reads ``os.environ`` directly.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

MIN_TIMEOUT = 8.0
MAX_TIMEOUT = 15.0

DEFAULT_WATCHLIST: Tuple[str, ...] = (
    "AAPL", "MSFT", "NVDA", "AMZN", "GOOGL", "META", "TSLA", "AVGO", "AMD",
    "NFLX", "INTC", "QCOM", "CRM", "ORCL", "ADBE", "MU", "AMAT", "LRCX", "SMCI",
    "SPY", "QQQ", "IWM", "SOXS", "SOXL", "TQQQ", "SPXL", "UVXY", "SQQQ",
    "JPM", "BAC", "GS", "MS", "WFC", "C", "V", "MA", "PYPL",
    "XOM", "CVX", "OXY", "HAL", "SLB",
    "MRNA", "BNTX", "NVAX", "BIIB", "GILD", "AMGN", "REGN", "VRTX", "SRPT",
    "COST", "WMT", "TGT", "HD", "SBUX", "MCD", "NKE",
    "PLTR", "RIVN", "LCID", "HOOD", "SOFI", "UPST", "AFRM", "COIN",
    "MARA", "RIOT", "CLSK", "HUT", "GME", "AMC", "BB",
)

DEFAULT_MARKET_QUERIES: Tuple[str, ...] = (
    'FDA approved OR "FDA approval" stock',
    '"merger" OR "acquisition" OR "acquires" stock deal',
    '"earnings" OR "quarterly results" beats misses stock',
    '"analyst" OR "price target" OR "upgrade" OR "downgrade" stock rating',
)


def load_config(config_path: str | Path = "config.yaml") -> Dict[str, Any]:
    """
    Load configuration from the specified YAML file.

    Args:
        config_path (str | Path): Path to the configuration file. Defaults to "config.yaml".

    Returns:
        Dict[str, Any]: A dictionary containing the configuration settings.
    """
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found at {config_path}")

    with open(config_file, "r", encoding="utf-8") as file:
        config_data = yaml.safe_load(file)

    if not config_data:
        raise ValueError(f"Configuration file {config_path} is empty or invalid.")

    return config_data


def clamp_timeout(value: Any) -> float:
    """Coerce a configured timeout into the supported 8–15 second band."""
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return 10.0
    return min(MAX_TIMEOUT, max(MIN_TIMEOUT, seconds))


@dataclass(frozen=True)
class Settings:
    """Process-wide read-only configuration.

    Attributes:
        polygon_key: Polygon.io API key (query parameter ``apiKey``).
        finnhub_key: Finnhub API key (query parameter ``token``).
        alpha_vantage_key: Alpha Vantage key; the public ``demo`` key when unset.
        timeout: Per-call HTTP timeout in seconds, clamped to 8–15.
        yahoo_chunk_size: Symbols per Yahoo quote request.
        polygon_chunk_size: Symbols per Polygon ticker-snapshot request.
        max_workers: Thread pool size for concurrent fan-out.
        watchlist: Symbol universe for extended-hours scanning.
        news_cap: Maximum merged news items returned.
        market_queries: Broad-market Google News queries.
        max_records: Maximum chain records enriched and resolved per scan.
        sentiment: Headline sentiment provider, ``keyword`` or ``finbert``.
    """
    polygon_key: str = ""
    finnhub_key: str = ""
    alpha_vantage_key: str = "demo"
    timeout: float = 10.0
    yahoo_chunk_size: int = 40
    polygon_chunk_size: int = 100
    max_workers: int = 8
    watchlist: Tuple[str, ...] = DEFAULT_WATCHLIST
    news_cap: int = 20
    market_queries: Tuple[str, ...] = DEFAULT_MARKET_QUERIES
    max_records: int = 30
    sentiment: str = "keyword"

    @classmethod
    def from_env(
        cls,
        config: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        """Build settings from ``config.yaml`` contents plus environment keys.

        Args:
            config: Parsed config dict (``providers``, ``scanner``, ``news`` sections).
            environ: Environment mapping; defaults to ``os.environ``.

        Returns:
            Settings: The frozen settings instance.
        """
        config = config or {}
        env = os.environ if environ is None else environ
        providers = config.get("providers", {}) or {}
        scanner = config.get("scanner", {}) or {}
        news = config.get("news", {}) or {}

        watchlist = scanner.get("watchlist") or DEFAULT_WATCHLIST
        queries = news.get("market_queries") or DEFAULT_MARKET_QUERIES

        return cls(
            polygon_key=env.get("POLYGON_KEY", ""),
            finnhub_key=env.get("FINNHUB_KEY", ""),
            alpha_vantage_key=env.get("ALPHA_KEY") or "demo",
            timeout=clamp_timeout(providers.get("timeout_seconds", 10)),
            yahoo_chunk_size=int(providers.get("yahoo_chunk_size", 40)),
            polygon_chunk_size=int(providers.get("polygon_chunk_size", 100)),
            max_workers=int(providers.get("max_workers", 8)),
            watchlist=tuple(s.upper().strip() for s in watchlist if s and s.strip()),
            news_cap=int(news.get("cap", 20)),
            market_queries=tuple(queries),
            max_records=int(scanner.get("max_records", 30)),
            sentiment=str(news.get("sentiment") or "keyword"),
        )
