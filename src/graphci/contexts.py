# contexts.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Iterable

import yaml

from .errors import ConfigError


class ContextStore:
    """
    Named sets of environment variables shared between jobs.

    File format (YAML):
        org-global:
          DEVHUB_CONSUMER_KEY: abc123
          DEVHUB_SERVER_KEY_HEX: ${DEVHUB_SERVER_KEY_HEX}

    `${VAR}` references expand from the host environment when loaded.
    """

    def __init__(self, contexts: Dict[str, Dict[str, str]] | None = None):
        self.contexts = dict(contexts or {})

    @classmethod
    def load(cls, path: str | Path) -> "ContextStore":
        p = Path(path).expanduser()
        if not p.exists():
            return cls()
        with p.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"Contexts file must be a mapping: {p}")

        contexts: Dict[str, Dict[str, str]] = {}
        for name, values in raw.items():
            if not isinstance(values, dict):
                raise ConfigError(f"Context {name!r} must be a mapping of variables: {p}")
            contexts[str(name)] = {
                str(k): os.path.expandvars("" if v is None else str(v)) for k, v in values.items()
            }
        return cls(contexts)

    def __contains__(self, name: str) -> bool:
        return name in self.contexts

    def env_for(self, names: Iterable[str]) -> Dict[str, str]:
        """Merge the named contexts in order. Raises KeyError on unknown names."""
        env: Dict[str, str] = {}
        for name in names:
            env.update(self.contexts[name])
        return env
