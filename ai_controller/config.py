"""
Controller Settings

Environment-driven configuration, built once at startup and passed to the
components that need it.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

PACKAGE_DIR = Path(__file__).parent
DEFAULT_DATABASE_URL = f"sqlite:///{PACKAGE_DIR / 'data' / 'controller.db'}"

# Environment variable and default base URL for every target module
MODULE_URL_ENV = {
    "intent": ("INTENT_INTERPRETER_URL", "http://localhost:3032"),
    "character": ("CHARACTER_CONTROLLER_URL", "http://localhost:3031"),
    "scene": ("SCENE_CONTROLLER_URL", "http://localhost:3033"),
    "item": ("ITEM_CONTROLLER_URL", "http://localhost:3034"),
    "storyteller": ("STORYTELLER_URL", "http://localhost:3037"),
}


def _default_module_urls() -> Dict[str, str]:
    return {module: default for module, (_, default) in MODULE_URL_ENV.items()}


@dataclass
class ControllerSettings:
    """
    Controller configuration

    Attributes:
        database_url: SQLAlchemy database URL for chains and execution history
        module_urls: Base URL per target module (intent, character, ...)
        step_timeout_seconds: Default timeout for each step's HTTP call
        max_routing_jumps: Jump budget per run before it fails with routing_cycle
        execution_log_dir: Directory for per-run JSONL logs (None = stdlib logging only)
        chain_seed_dir: Directory of YAML chains loaded at startup
        chain_seed_user: Owner assigned to seeded chains
        log_level: Root log level
    """
    database_url: str = DEFAULT_DATABASE_URL
    module_urls: Dict[str, str] = field(default_factory=_default_module_urls)
    step_timeout_seconds: float = 10.0
    max_routing_jumps: int = 50
    execution_log_dir: Optional[Path] = None
    chain_seed_dir: Optional[Path] = None
    chain_seed_user: str = "admin"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ControllerSettings":
        """Build settings from environment variables, falling back to defaults"""
        module_urls = {
            module: os.getenv(env_name, default)
            for module, (env_name, default) in MODULE_URL_ENV.items()
        }

        log_dir = os.getenv("EXECUTION_LOG_DIR")
        seed_dir = os.getenv("CHAIN_SEED_DIR")

        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            module_urls=module_urls,
            step_timeout_seconds=float(os.getenv("STEP_TIMEOUT_SECONDS", "10")),
            max_routing_jumps=int(os.getenv("MAX_ROUTING_JUMPS", "50")),
            execution_log_dir=Path(log_dir) if log_dir else None,
            chain_seed_dir=Path(seed_dir) if seed_dir else None,
            chain_seed_user=os.getenv("CHAIN_SEED_USER", "admin"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
