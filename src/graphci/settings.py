from __future__ import annotations
import os

STATE_DIR = os.environ.get("GRAPHCI_STATE_DIR", ".graphci")
CONTEXTS_FILE = os.environ.get("GRAPHCI_CONTEXTS_FILE", os.path.join(STATE_DIR, "contexts.yml"))
EXECUTOR = os.environ.get("GRAPHCI_EXECUTOR", "local")
MAX_WORKERS = int(os.environ["GRAPHCI_MAX_WORKERS"]) if os.environ.get("GRAPHCI_MAX_WORKERS") else None
NO_OUTPUT_TIMEOUT = os.environ.get("GRAPHCI_NO_OUTPUT_TIMEOUT", "10m")
