from __future__ import annotations
import os, json, pathlib, random


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


SCALE_MIN: int = 1
SCALE_MAX: int = 5
SCALE_MID: int = 3

HARD_CAP: int = 25
CONVERGENCE_THRESHOLD: float = 0.5
MIN_QUESTIONS_PER_DIMENSION: int = 3
EXPLORATION_QUESTIONS_MIN: int = 5

# bound update heuristics; direction matters more than the exact values
CORRECT_MARGIN: float = 0.3
CORRECT_STRETCH: float = 1.5
DOING_WELL_ACC: float = 0.6
PARTIAL_OFFSET: float = 0.5
PARTIAL_SCALE: float = 0.8
WRONG_MARGIN: float = 0.5
LENIENT_ACC: float = 0.7
LENIENT_MIN_COUNT: int = 3
LENIENT_GAP: float = 0.3
STRUGGLE_ACC: float = 0.4
STRUGGLE_DROP: float = 1.5
INVERSION_BIAS: float = 0.5

ESTIMATE_HIGH_ACC: float = 0.6
ESTIMATE_LOWER_WEIGHT_HIGH: float = 0.6
ESTIMATE_LOWER_WEIGHT_LOW: float = 0.4

CONF_W_RANGE: float = 0.5
CONF_W_COUNT: float = 0.3
CONF_W_ACC: float = 0.2
CONF_FULL_COUNT: int = 6

BANK_RANGE_MAX: float = 2.0
BANK_COUNT_MAX: int = 3
BANK_TOLERANCE: int = 1
GENERATION_RETRIES: int = 1
RECENT_TEXTS_LIMIT: int = 5

HINT_QUICK_SEC: float = 30.0
HINT_RELUCTANT_SEC: float = 120.0
HINT_HIGH_EFFECT: float = 0.7
HINT_MID_EFFECT: float = 0.4

STRENGTH_LEVEL: int = 4
GROWTH_LEVEL: int = 2

# rushed-submission check on the final profile
FAST_ANSWER_SEC: float = 5.0
RUSHED_FAST_SHARE: float = 0.5
RUSHED_MAX_ACC: float = 0.3
PROFILE_SAMPLE_SIZE: int = 10
PACE_QUICK_SEC: float = 15.0
PACE_SLOW_SEC: float = 120.0

AUDIT_EXPORT_ENABLED: bool = True
OFFLINE_TEMPLATES: bool = True

INPUT_PRICE_PER_MTOK: float = 3.0
OUTPUT_PRICE_PER_MTOK: float = 15.0
LLM_TIMEOUT_SEC: float = 30.0
LLM_CALL_LOG: str = "llm_call_log.jsonl"

DEBUG_TRACE: bool = False
DEBUG_SEED: int | None = None
TRACE_FIELDS: tuple[str, ...] = (
    "dimension",
    "question_id",
    "difficulty",
    "verdict",
    "accuracy_before",
    "lower_before",
    "upper_before",
    "lower_after",
    "upper_after",
    "inverted",
)

# environment overrides
HARD_CAP = _env_int("HARD_CAP", HARD_CAP)
CONVERGENCE_THRESHOLD = _env_float("CONVERGENCE_THRESHOLD", CONVERGENCE_THRESHOLD)
MIN_QUESTIONS_PER_DIMENSION = _env_int("MIN_QUESTIONS_PER_DIMENSION", MIN_QUESTIONS_PER_DIMENSION)
EXPLORATION_QUESTIONS_MIN = _env_int("EXPLORATION_QUESTIONS_MIN", EXPLORATION_QUESTIONS_MIN)
CORRECT_MARGIN = _env_float("CORRECT_MARGIN", CORRECT_MARGIN)
WRONG_MARGIN = _env_float("WRONG_MARGIN", WRONG_MARGIN)
STRUGGLE_DROP = _env_float("STRUGGLE_DROP", STRUGGLE_DROP)
GENERATION_RETRIES = _env_int("GENERATION_RETRIES", GENERATION_RETRIES)
DEBUG_TRACE = _env_bool("DEBUG_TRACE", DEBUG_TRACE)
_seed_raw = os.getenv("DEBUG_SEED")
DEBUG_SEED = int(_seed_raw) if _seed_raw and _seed_raw.strip().lstrip("-").isdigit() else None
AUDIT_EXPORT_ENABLED = _env_bool("AUDIT_EXPORT_ENABLED", AUDIT_EXPORT_ENABLED)
LLM_TIMEOUT_SEC = _env_float("LLM_TIMEOUT_SEC", LLM_TIMEOUT_SEC)
OFFLINE_TEMPLATES = _env_bool("OFFLINE_TEMPLATES", OFFLINE_TEMPLATES)
LLM_CALL_LOG = os.getenv("LLM_CALL_LOG", LLM_CALL_LOG)

RUNTIME_CONFIG_FILE = os.getenv("RUNTIME_CONFIG_FILE", "config.json")
LLM_BACKENDS = ("azure", "ollama")

# runtime keys that the environment may override; value is the parser
_RUNTIME_KEYS = {
    "USE_LLM": lambda v: v.strip().lower() in {"1", "true", "yes", "on"},
    "LLM_BACKEND": str,
    "OLLAMA_HOST": str,
    "OLLAMA_MODEL": str,
    "AZURE_OPENAI_ENDPOINT": str,
    "AZURE_OPENAI_API_VERSION": str,
    "AZURE_OPENAI_API_KEY": str,
    "AZURE_OPENAI_DEPLOYMENT": str,
    "SEED": int,
}


def load_config() -> dict:
    """Runtime switches: ``config.json`` in the working dir, then the environment."""
    cfg: dict = {}
    p = pathlib.Path(RUNTIME_CONFIG_FILE)
    if p.is_file():
        try:
            raw = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            raw = None
        if isinstance(raw, dict):
            cfg.update(raw)
    for key, parse in _RUNTIME_KEYS.items():
        val = os.getenv(key)
        if not val:
            continue
        try:
            cfg[key] = parse(val)
        except ValueError:
            continue
    return cfg


def get_backend(cfg: dict) -> str | None:
    """Configured LLM backend, or None when LLM use is switched off."""
    if not cfg.get("USE_LLM"):
        return None
    name = str(cfg.get("LLM_BACKEND") or "").strip().lower()
    return name if name in LLM_BACKENDS else None


def seed_rng(cfg: dict) -> None:
    seed = cfg.get("SEED")
    if seed is not None:
        random.seed(int(seed))
