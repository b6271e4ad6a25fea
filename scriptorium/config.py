"""Configuration resolution for the scriptorium CLI."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .constants import CLUSTER_URLS, DEFAULT_CACHE_DIR, DEFAULT_COMMITMENT, DEFAULT_CONCURRENCY

ENV_RPC_URL = "SCRIPTORIUM_RPC_URL"
ENV_KEYPAIR = "SCRIPTORIUM_KEYPAIR"
COMMITMENTS = ("processed", "confirmed", "finalized")


def _load_toml_bytes(data: bytes) -> Dict[str, Any]:
    try:
        import tomllib  # Python 3.11+
    except ImportError:  # pragma: no cover
        import tomli as tomllib  # type: ignore
    return tomllib.loads(data.decode("utf-8"))


def load_config_file(path: str | Path) -> Dict[str, Any]:
    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    return _load_toml_bytes(config_path.read_bytes())


@dataclass(frozen=True)
class SolanaCliConfig:
    """The Solana CLI settings scriptorium falls back to."""

    json_rpc_url: Optional[str] = None
    keypair_path: Optional[str] = None
    commitment: Optional[str] = None


def solana_cli_config_path(env: Optional[Dict[str, str]] = None) -> Path:
    env = os.environ if env is None else env
    override = env.get("SOLANA_CONFIG") or env.get("SOLANA_CONFIG_FILE")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "solana" / "cli" / "config.yml"


def load_solana_cli_config(path: Optional[Path] = None) -> SolanaCliConfig:
    cfg_path = path or solana_cli_config_path()
    try:
        text = cfg_path.read_text()
    except OSError:
        return SolanaCliConfig()
    values: Dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        key = key.strip()
        # Flat "key: value" lines only; nested YAML is not read.
        if not sep or key not in ("json_rpc_url", "keypair_path", "commitment") or line[:1].isspace():
            continue
        value = value.strip().strip("\"'")
        if value:
            values[key] = value
    keypair = values.get("keypair_path")
    return SolanaCliConfig(
        json_rpc_url=values.get("json_rpc_url"),
        keypair_path=str(Path(keypair).expanduser()) if keypair else None,
        commitment=values.get("commitment"),
    )


def _table(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def _resolve_relative(base: Optional[Path], raw: str) -> str:
    expanded = Path(raw).expanduser()
    if expanded.is_absolute() or base is None:
        return str(expanded)
    return str((base.parent / expanded).resolve())


@dataclass
class Settings:
    rpc_url: str
    keypair_path: Optional[str]
    commitment: str = DEFAULT_COMMITMENT
    concurrency: int = DEFAULT_CONCURRENCY
    cache_dir: str = DEFAULT_CACHE_DIR

    def require_keypair(self) -> str:
        if not self.keypair_path:
            raise ValueError("Keypair is required (pass --keypair or set keypair_path in the Solana CLI config)")
        return self.keypair_path


def resolve_settings(
    rpc_url: Optional[str] = None,
    cluster: Optional[str] = None,
    keypair: Optional[str] = None,
    config_path: Optional[str] = None,
    commitment: Optional[str] = None,
    concurrency: Optional[int] = None,
    cache_dir: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    solana_cfg: Optional[SolanaCliConfig] = None,
) -> Settings:
    env = dict(os.environ) if env is None else env
    solana_cfg = load_solana_cli_config() if solana_cfg is None else solana_cfg
    file_cfg: Dict[str, Any] = load_config_file(config_path) if config_path else {}
    base = Path(config_path).expanduser() if config_path else None
    cluster_cfg = _table(file_cfg, "cluster")
    inscribe_cfg = _table(file_cfg, "inscribe")

    if not rpc_url and cluster:
        rpc_url = CLUSTER_URLS.get(cluster)
        if not rpc_url:
            raise ValueError(f"Unknown cluster: {cluster}")
    if not rpc_url and isinstance(cluster_cfg.get("rpc_url"), str):
        rpc_url = cluster_cfg["rpc_url"]
    if not rpc_url:
        rpc_url = env.get(ENV_RPC_URL) or solana_cfg.json_rpc_url or CLUSTER_URLS["localnet"]

    if not keypair and isinstance(cluster_cfg.get("keypair"), str) and cluster_cfg["keypair"]:
        keypair = _resolve_relative(base, cluster_cfg["keypair"])
    if not keypair:
        keypair = env.get(ENV_KEYPAIR) or solana_cfg.keypair_path

    if not commitment:
        raw = cluster_cfg.get("commitment")
        if isinstance(raw, str) and raw:
            commitment = raw
        elif solana_cfg.commitment in COMMITMENTS:
            commitment = solana_cfg.commitment
        else:
            commitment = DEFAULT_COMMITMENT
    if commitment not in COMMITMENTS:
        raise ValueError(f"commitment must be one of {', '.join(COMMITMENTS)}")

    if concurrency is None:
        raw = inscribe_cfg.get("concurrency", DEFAULT_CONCURRENCY)
        if not isinstance(raw, int):
            raise ValueError("inscribe.concurrency must be an integer")
        concurrency = raw
    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")

    if not cache_dir:
        raw = inscribe_cfg.get("cache_dir")
        cache_dir = _resolve_relative(base, raw) if isinstance(raw, str) and raw else DEFAULT_CACHE_DIR

    return Settings(
        rpc_url=rpc_url,
        keypair_path=keypair,
        commitment=commitment,
        concurrency=concurrency,
        cache_dir=cache_dir,
    )
