from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict

import yaml

from .openai_compat import OpenAICompatClient


_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")

DEFAULT_REGISTRY_FILE = "promptline.yaml"


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    base_url: str
    model: str
    api_key: str
    timeout: float = 120.0

    def client(self, *, model: str | None = None) -> OpenAICompatClient:
        return OpenAICompatClient(
            model=model or self.model,
            base_url=self.base_url,
            api_key=self.api_key,
            provider_name=self.name,
            timeout=self.timeout,
        )


class ProviderRegistry:
    def __init__(self) -> None:
        self._items: Dict[str, ProviderConfig] = {}

    def add(self, cfg: ProviderConfig) -> None:
        key = cfg.name.strip().lower()
        if not key:
            raise ValueError("Provider name cannot be empty.")
        self._items[key] = cfg

    def get(self, name: str) -> ProviderConfig:
        key = (name or "").strip().lower()
        if not key:
            raise ValueError("Missing --provider.")
        if key not in self._items:
            known = ", ".join(sorted(self._items.keys())) or "(none)"
            raise ValueError(f"Unknown provider '{name}'. Known providers: {known}")
        return self._items[key]

    def names(self) -> list[str]:
        return sorted(self._items.keys())


def _expand_env_placeholders(s: str) -> str:
    def repl(m: re.Match) -> str:
        var = m.group(1)
        val = os.getenv(var)
        if not val:
            raise ValueError(f"API key placeholder '${{{var}}}' not found in environment or is empty.")
        return val

    return _ENV_PATTERN.sub(repl, s)


def load_provider_registry(yaml_path: str | Path) -> ProviderRegistry:
    """Read the `providers:` mapping of a promptline.yaml file.

    providers:
      local:
        PROMPTLINE_BASE_URL: http://localhost:11434/v1
        PROMPTLINE_MODEL: qwen2.5-coder
        PROMPTLINE_API_KEY: ${OLLAMA_API_KEY}
    """
    p = Path(yaml_path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"Config YAML not found: {p}")

    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    providers = data.get("providers") if isinstance(data, dict) else None
    if not isinstance(providers, dict) or not providers:
        raise ValueError("YAML must contain a non-empty 'providers:' mapping.")

    reg = ProviderRegistry()
    for name, cfg in providers.items():
        if not isinstance(cfg, dict):
            raise ValueError(f"providers.{name} must be a mapping/dict.")

        fields = {k: str(cfg.get(k) or "").strip() for k in ("PROMPTLINE_BASE_URL", "PROMPTLINE_MODEL", "PROMPTLINE_API_KEY")}
        missing = [k for k, v in fields.items() if not v]
        if missing:
            raise ValueError(f"providers.{name} missing required field(s): {', '.join(missing)}")

        api_key = _expand_env_placeholders(fields["PROMPTLINE_API_KEY"])
        timeout = cfg.get("timeout", 120)
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError(f"providers.{name}.timeout must be a positive number.")

        reg.add(ProviderConfig(
            name=str(name),
            base_url=fields["PROMPTLINE_BASE_URL"],
            model=fields["PROMPTLINE_MODEL"],
            api_key=api_key,
            timeout=float(timeout),
        ))

    return reg
