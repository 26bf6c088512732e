"""Three-layer config loading and merging."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .models import Mode, Role


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ProviderCreds:
    api_key: str = ""


@dataclass
class ProvidersConfig:
    google: ProviderCreds = field(default_factory=ProviderCreds)
    groq: ProviderCreds = field(default_factory=ProviderCreds)
    openrouter: ProviderCreds = field(default_factory=ProviderCreds)
    anthropic: ProviderCreds = field(default_factory=ProviderCreds)
    openai: ProviderCreds = field(default_factory=ProviderCreds)
    deepseek: ProviderCreds = field(default_factory=ProviderCreds)


PROVIDER_IDS = ("google", "groq", "openrouter", "anthropic", "openai", "deepseek")

# Env var → provider. Later entries win when several are set for one provider.
_ENV_KEYS = [
    ("GEMINI_API_KEY", "google"),
    ("GOOGLE_API_KEY", "google"),
    ("GROQ_API_KEY", "groq"),
    ("OPENROUTER_API_KEY", "openrouter"),
    ("ANTHROPIC_API_KEY", "anthropic"),
    ("OPENAI_API_KEY", "openai"),
    ("DEEPSEEK_API_KEY", "deepseek"),
]


@dataclass
class RoleConfig:
    provider: str = ""
    model: str = ""


def _default_roles() -> dict[str, RoleConfig]:
    return {
        Role.ARCHITECT.value: RoleConfig(provider="google", model="gemini-2.5-flash"),
        Role.CODER.value: RoleConfig(provider="groq", model="llama-3.1-8b-instant"),
        Role.REVIEWER.value: RoleConfig(
            provider="openrouter", model="mistralai/mistral-7b-instruct"
        ),
    }


@dataclass
class BudgetsConfig:
    max_retries: int = 2
    provider_max_attempts: int = 4


@dataclass
class CorrectionConfig:
    strategy: str = "append"  # "append" | "replace"


@dataclass
class MemoryConfig:
    enabled: bool = True
    path: str = ".buildq/memory.md"


@dataclass
class PreviewConfig:
    source_tag: str = "buildq-agent"


@dataclass
class Config:
    mode: str = Mode.AUTONOMOUS.value
    roles: dict[str, RoleConfig] = field(default_factory=_default_roles)
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    budgets: BudgetsConfig = field(default_factory=BudgetsConfig)
    correction: CorrectionConfig = field(default_factory=CorrectionConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    preview: PreviewConfig = field(default_factory=PreviewConfig)
    project_root: str = ""

    def role(self, role: Role) -> RoleConfig:
        return self.roles.get(role.value, RoleConfig())

    def api_key(self, provider: str) -> str:
        creds = getattr(self.providers, provider, None)
        return creds.api_key if creds else ""


# ---------------------------------------------------------------------------
# Deep merge
# ---------------------------------------------------------------------------

def deep_merge(base: dict, override: dict) -> dict:
    """Field-level deep merge. Lists are replaced, None values ignored."""
    result = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# ---------------------------------------------------------------------------
# Dict → Config mapping
# ---------------------------------------------------------------------------

def _build_roles(data: dict) -> dict[str, RoleConfig]:
    roles = _default_roles()
    for role in Role:
        entry = data.get(role.value)
        if not isinstance(entry, dict):
            continue
        current = roles[role.value]
        roles[role.value] = RoleConfig(
            provider=entry.get("provider", current.provider),
            model=entry.get("model", current.model),
        )
    return roles


def _dict_to_config(data: dict, project_root: str) -> Config:
    cfg = Config(project_root=project_root)

    if "mode" in data:
        mode = str(data["mode"])
        if mode not in {m.value for m in Mode}:
            raise ValueError(f"Invalid mode: {mode!r}")
        cfg.mode = mode

    if "roles" in data and isinstance(data["roles"], dict):
        cfg.roles = _build_roles(data["roles"])

    if "providers" in data and isinstance(data["providers"], dict):
        p = data["providers"]
        cfg.providers = ProvidersConfig(**{
            pid: ProviderCreds(api_key=(p.get(pid) or {}).get("api_key", ""))
            for pid in PROVIDER_IDS
        })

    if "budgets" in data and isinstance(data["budgets"], dict):
        b = data["budgets"]
        cfg.budgets = BudgetsConfig(
            max_retries=int(b.get("max_retries", cfg.budgets.max_retries)),
            provider_max_attempts=int(
                b.get("provider_max_attempts", cfg.budgets.provider_max_attempts)
            ),
        )

    if "correction" in data and isinstance(data["correction"], dict):
        strategy = data["correction"].get("strategy", cfg.correction.strategy)
        if strategy not in ("append", "replace"):
            raise ValueError(f"Invalid correction strategy: {strategy!r}")
        cfg.correction = CorrectionConfig(strategy=strategy)

    if "memory" in data and isinstance(data["memory"], dict):
        m = data["memory"]
        cfg.memory = MemoryConfig(
            enabled=bool(m.get("enabled", cfg.memory.enabled)),
            path=m.get("path", cfg.memory.path),
        )

    if "preview" in data and isinstance(data["preview"], dict):
        cfg.preview = PreviewConfig(
            source_tag=data["preview"].get("source_tag", cfg.preview.source_tag),
        )

    return cfg


# ---------------------------------------------------------------------------
# Load config (3-layer)
# ---------------------------------------------------------------------------

def load_config(project_root: str | Path) -> Config:
    """Load and merge config from up to 3 layers.

    Priority (highest first):
      1. Environment variables (API keys)
      2. .buildq/local.config.yaml
      3. .buildq/config.yaml
    """
    project_root = Path(project_root)
    buildq_dir = project_root / ".buildq"

    # Layer 1: base config
    base_path = buildq_dir / "config.yaml"
    base_data: dict = {}
    if base_path.exists():
        parsed = yaml.safe_load(base_path.read_text())
        if parsed is None:
            base_data = {}
        elif not isinstance(parsed, dict):
            raise ValueError(f"Invalid config.yaml: expected mapping, got {type(parsed).__name__}")
        else:
            base_data = parsed

    # Layer 2: local override
    local_path = buildq_dir / "local.config.yaml"
    local_data: dict = {}
    if local_path.exists():
        parsed = yaml.safe_load(local_path.read_text())
        if isinstance(parsed, dict):
            local_data = parsed

    merged = deep_merge(base_data, local_data)
    cfg = _dict_to_config(merged, str(project_root))

    # Layer 3: env vars override API keys (highest priority)
    for env_name, provider in _ENV_KEYS:
        value = os.environ.get(env_name)
        if value:
            getattr(cfg.providers, provider).api_key = value

    return cfg
