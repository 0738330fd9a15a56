"""
Ledger Configuration

Loads endpoint, batching and cache settings from config/ledger.json,
then applies CMNOTES_* environment overrides.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, replace
from typing import FrozenSet, Optional, Mapping
from pathlib import Path
import json
import os


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / 'config' / 'ledger.json'
ENV_PREFIX = 'CMNOTES_'


@dataclass(frozen=True)
class LedgerConfig:
    """
    Configuration for ledger access and caching.

    WHY FROZEN:
    Components hold a reference for their whole lifetime.
    Changes require a new config instance.
    """
    graphql_url: str = 'https://uploader.irys.xyz/graphql'
    gateway_url: str = 'https://gateway.irys.xyz'
    timeout_seconds: float = 10.0
    user_agent: str = 'cmnotes/1.0'

    # Query paging
    page_size: int = 1000
    max_pages: int = 5

    # Blob fetch batching
    batch_size: int = 15
    batch_delay_seconds: float = 0.1

    # Individual records without a content tag get it from their mutable address
    fetch_missing_content: bool = True

    # Cache
    cache_ttl_seconds: float = 300.0
    fresh_load_window_seconds: float = 1.0
    monitor_interval_seconds: float = 60.0

    # Views
    recent_limit: int = 10
    recent_users_strip: int = 20

    dapp_handles: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.cache_ttl_seconds <= 0:
            raise ValueError("cache_ttl_seconds must be positive")
        normalized = frozenset(h.lstrip('@').lower() for h in self.dapp_handles if h)
        object.__setattr__(self, 'dapp_handles', normalized)

    def mutable_url(self, tx_id: str) -> str:
        return f"{self.gateway_url.rstrip('/')}/mutable/{tx_id}"

    def data_url(self, tx_id: str) -> str:
        return f"{self.gateway_url.rstrip('/')}/{tx_id}"

    @classmethod
    def load(
        cls,
        config_path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None
    ) -> 'LedgerConfig':
        """Load from ledger.json (if present) and the environment."""
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH

        values = {}
        if Path(config_path).exists():
            with open(config_path, 'r', encoding='utf-8') as f:
                values = json.load(f)

        config = cls.from_dict(values)
        return config.with_env(os.environ if environ is None else environ)

    @classmethod
    def from_dict(cls, values: Mapping[str, object]) -> 'LedgerConfig':
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in values.items() if k in known}
        if 'dapp_handles' in kwargs:
            kwargs['dapp_handles'] = frozenset(kwargs['dapp_handles'])
        return cls(**kwargs)

    def with_env(self, environ: Mapping[str, str]) -> 'LedgerConfig':
        """Return a copy with CMNOTES_<FIELD> overrides applied."""
        overrides = {}
        for f in fields(self):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            current = getattr(self, f.name)
            if isinstance(current, frozenset):
                overrides[f.name] = frozenset(p.strip() for p in raw.split(',') if p.strip())
            elif isinstance(current, bool):
                overrides[f.name] = raw.lower() in ('1', 'true', 'yes')
            else:
                overrides[f.name] = type(current)(raw)
        return replace(self, **overrides) if overrides else self
