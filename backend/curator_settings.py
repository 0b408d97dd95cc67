import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

from media_models import Provider, RateBudget
from rate_limit_governor import DEFAULT_BUDGETS


REPO_ROOT = Path(__file__).resolve().parent.parent

# Env var + secrets-file aliases per provider (first non-empty wins)
API_KEY_ENV = {
    Provider.PEXELS: "PEXELS_API_KEY",
    Provider.PIXABAY: "PIXABAY_API_KEY",
    Provider.GOOGLE_PLACES: "GOOGLE_PLACES_API_KEY",
}
API_KEY_ALIASES = {
    Provider.PEXELS: ("pexels-api-key", "pexels", "PEXELS_API_KEY"),
    Provider.PIXABAY: ("pixabay-api-key", "pixabay", "PIXABAY_API_KEY"),
    Provider.GOOGLE_PLACES: ("google-places-api-key", "googleplaces", "google_places", "GOOGLE_PLACES_API_KEY"),
}
# Placeholder values shipped in sample configs; never real keys
_PLACEHOLDER_KEYS = {"", "test-key", "your-api-key", "changeme"}

_RATE_ENV_PREFIX = {
    Provider.PEXELS: "PEXELS",
    Provider.PIXABAY: "PIXABAY",
    Provider.GOOGLE_PLACES: "GOOGLE_PLACES",
}


def load_env(dotenv_path: Optional[str] = None) -> None:
    """load_dotenv() that tolerates a missing/unreadable .env."""
    try:
        if dotenv_path:
            load_dotenv(dotenv_path)
        else:
            load_dotenv()
    except (OSError, UnicodeDecodeError) as e:
        print(f"⚠️  .env not loaded: {e}")


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return float(default)
    try:
        return float(raw)
    except ValueError:
        print(f"⚠️  {name}={raw!r} is not a number, using {default}")
        return float(default)


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    return int(_env_float(env, name, default))


def _env_delays(env: Mapping[str, str], name: str, default: Tuple[float, ...]) -> Tuple[float, ...]:
    raw = (env.get(name) or "").strip()
    if not raw:
        return tuple(default)
    out = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            out.append(max(0.0, float(part)))
        except ValueError:
            print(f"⚠️  {name}={raw!r} is not a comma list of numbers, using defaults")
            return tuple(default)
    return tuple(out) or tuple(default)


def _clean_key(value) -> str:
    key = str(value or "").strip()
    return "" if key.lower() in _PLACEHOLDER_KEYS else key


def load_api_keys(env: Optional[Mapping[str, str]] = None, secrets_file: Optional[str] = None) -> Dict[Provider, str]:
    """
    Normalized {Provider: api_key}. Env vars win over the secrets file.
    Providers without a usable key are absent from the result.
    """
    env = os.environ if env is None else env
    secrets: Dict[str, str] = {}
    path = secrets_file or (env.get("MEDIA_API_KEYS_FILE") or "").strip()
    if path:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                secrets = {str(k): str(v) for k, v in data.items() if v is not None}
        except (OSError, ValueError) as e:
            print(f"⚠️  API key file {path} not readable: {e}")

    keys: Dict[Provider, str] = {}
    for provider, env_var in API_KEY_ENV.items():
        key = _clean_key(env.get(env_var))
        if not key:
            for alias in API_KEY_ALIASES[provider]:
                key = _clean_key(secrets.get(alias))
                if key:
                    break
        if key:
            keys[provider] = key
    return keys


@dataclass
class CuratorSettings:
    """
    Everything the media curator needs, built once per process and passed in.
    """

    api_keys: Dict[Provider, str] = field(default_factory=dict)
    rate_budgets: Dict[Provider, RateBudget] = field(default_factory=lambda: dict(DEFAULT_BUDGETS))
    search_timeout_sec: float = 10.0
    places_timeout_sec: float = 15.0
    download_timeout_sec: float = 30.0
    scene_timeout_sec: float = 120.0
    scene_delays_sec: Tuple[float, ...] = (0.0, 2.0, 4.0)
    expansion_threshold: int = 3
    early_expansion_probability: float = 0.3
    min_bytes: int = 10_000
    max_bytes: int = 100 * 1024 * 1024
    download_workers: int = 3
    max_attempts: int = 3
    retry_base_delay_sec: float = 1.0
    store_dir: str = str(REPO_ROOT / "projects")
    port: int = 5000

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "CuratorSettings":
        if env is None:
            load_env()
            env = os.environ

        budgets: Dict[Provider, RateBudget] = {}
        for provider, default in DEFAULT_BUDGETS.items():
            prefix = _RATE_ENV_PREFIX[provider]
            budgets[provider] = RateBudget(
                limit=max(1, _env_int(env, f"{prefix}_RATE_LIMIT", default.limit)),
                window_sec=max(1.0, _env_float(env, f"{prefix}_RATE_WINDOW_SEC", default.window_sec)),
                min_interval_sec=max(0.0, _env_float(env, f"{prefix}_MIN_INTERVAL_SEC", default.min_interval_sec)),
            )

        d = cls()
        return cls(
            api_keys=load_api_keys(env),
            rate_budgets=budgets,
            search_timeout_sec=_env_float(env, "MEDIA_SEARCH_TIMEOUT_SEC", d.search_timeout_sec),
            places_timeout_sec=_env_float(env, "MEDIA_PLACES_TIMEOUT_SEC", d.places_timeout_sec),
            download_timeout_sec=_env_float(env, "MEDIA_DOWNLOAD_TIMEOUT_SEC", d.download_timeout_sec),
            scene_timeout_sec=_env_float(env, "MEDIA_SCENE_TIMEOUT_SEC", d.scene_timeout_sec),
            scene_delays_sec=_env_delays(env, "MEDIA_SCENE_DELAYS_SEC", d.scene_delays_sec),
            expansion_threshold=max(1, _env_int(env, "MEDIA_EXPANSION_THRESHOLD", d.expansion_threshold)),
            early_expansion_probability=min(1.0, max(0.0, _env_float(env, "MEDIA_EARLY_EXPANSION_PROBABILITY", d.early_expansion_probability))),
            min_bytes=max(0, _env_int(env, "MEDIA_MIN_BYTES", d.min_bytes)),
            max_bytes=max(1, _env_int(env, "MEDIA_MAX_BYTES", d.max_bytes)),
            download_workers=max(1, _env_int(env, "MEDIA_DOWNLOAD_WORKERS", d.download_workers)),
            max_attempts=max(1, _env_int(env, "MEDIA_MAX_ATTEMPTS", d.max_attempts)),
            retry_base_delay_sec=max(0.0, _env_float(env, "MEDIA_RETRY_BASE_DELAY_SEC", d.retry_base_delay_sec)),
            store_dir=(env.get("MEDIA_STORE_DIR") or "").strip() or d.store_dir,
            port=_env_int(env, "PORT", d.port),
        )

    def providers_configured(self) -> Dict[str, bool]:
        """Which providers have a key (never returns the keys)."""
        return {p.value: p in self.api_keys for p in API_KEY_ENV}
