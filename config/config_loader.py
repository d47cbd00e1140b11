import os
import re
from pathlib import Path
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

load_dotenv()

_ENV_PATTERN = re.compile(r'^\$\{([A-Za-z_][A-Za-z0-9_]*)(?::(.*))?\}$')
DEFAULT_CONFIG_PATH = Path(__file__).parent / 'config.yaml'


class SectionProxy(Mapping):
    def __init__(self, data: Dict[str, Any]):
        self._data = data or {}

    def __getitem__(self, key: str) -> Any:
        value = self._data[key]
        if isinstance(value, dict):
            return SectionProxy(value)
        return value

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)
        value = self._data.get(name)
        if isinstance(value, dict):
            return SectionProxy(value)
        if value is None:
            raise AttributeError(f"Config key '{name}' not found")
        return value

    def __iter__(self):
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        value = self._data.get(key, default)
        if isinstance(value, dict):
            return SectionProxy(value)
        return value

    def to_dict(self) -> Dict[str, Any]:
        return self._data


def _coerce_scalar(value: str) -> Any:
    """Turn env-substituted strings such as "0.7" or "true" into YAML scalars."""
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        return value
    if isinstance(parsed, (bool, int, float)):
        return parsed
    return value


class Config:
    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path or os.getenv('SPREAD_MONITOR_CONFIG') or DEFAULT_CONFIG_PATH)
        self._data = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            raise RuntimeError(f"Configuration file not found at {self.config_path}")
        with self.config_path.open('r') as fh:
            try:
                raw = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise RuntimeError(f"Error parsing YAML configuration: {exc}") from exc
        return self._resolve_env_vars(raw)

    def _resolve_env_vars(self, node: Any) -> Any:
        if isinstance(node, dict):
            return {key: self._resolve_env_vars(value) for key, value in node.items()}
        if isinstance(node, list):
            return [self._resolve_env_vars(item) for item in node]
        if isinstance(node, str):
            match = _ENV_PATTERN.match(node)
            if not match:
                return node
            env_key, default = match.group(1), match.group(2)
            value = os.getenv(env_key)
            if value in (None, ''):
                if default is None:
                    return None
                value = default
            return _coerce_scalar(value)
        return node

    def get(self, key: str, default: Any = None) -> Any:
        value = self._data.get(key, default)
        if isinstance(value, dict):
            return SectionProxy(value)
        return value

    def __getitem__(self, key: str) -> Any:
        value = self._data[key]
        if isinstance(value, dict):
            return SectionProxy(value)
        return value

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)
        try:
            value = self._data[name]
        except KeyError as exc:
            raise AttributeError(f"Config key '{name}' not found") from exc
        if isinstance(value, dict):
            return SectionProxy(value)
        return value

    def reload(self) -> None:
        self._data = self._load_config()


def validate_settings(cfg: Any) -> None:
    """Raise RuntimeError listing every problem that must stop startup."""
    problems: List[str] = []

    notifications = cfg.get('notifications') or {}
    if not notifications.get('telegram_bot_token'):
        problems.append('TELEGRAM_BOT_TOKEN is not set')
    if not notifications.get('telegram_chat_id'):
        problems.append('TELEGRAM_CHAT_ID is not set')

    signals = cfg.get('signals') or {}
    try:
        entry = float(signals.get('entry_threshold_pct', 0.7))
        exit_ = float(signals.get('exit_threshold_pct', 0.5))
        cooldown = float(signals.get('cooldown_ms', 60000))
    except (TypeError, ValueError) as exc:
        problems.append(f'signal thresholds must be numeric: {exc}')
    else:
        if exit_ >= entry:
            problems.append(f'exit threshold {exit_} must be below entry threshold {entry}')
        if cooldown < 0:
            problems.append('cooldown_ms must not be negative')

    websocket = cfg.get('websocket') or {}
    for key in ('max_connections', 'batch_size'):
        try:
            if int(websocket.get(key, 1)) < 1:
                problems.append(f'websocket.{key} must be at least 1')
        except (TypeError, ValueError):
            problems.append(f'websocket.{key} must be an integer')

    if problems:
        raise RuntimeError('Invalid configuration: ' + '; '.join(problems))


config = Config()
