"""
BaseChat Configuration Module
Centralized configuration for the application.
"""

import os
from pathlib import Path

import yaml

# Debug Mode Configuration
DEBUG_MODE = os.environ.get('DEBUG', 'false').lower() == 'true'

# Application Paths
APP_NAME = "BaseChat"
APPDATA_DIR = Path(os.environ.get('APPDATA', os.path.expanduser('~/.config'))) / APP_NAME
MODELS_DIR = APPDATA_DIR / "models"
LOGS_DIR = APPDATA_DIR / "logs"

# Ensure directories exist
for directory in [APPDATA_DIR, MODELS_DIR, LOGS_DIR]:
    directory.mkdir(parents=True, exist_ok=True)

# Logging Configuration
LOG_FILE = LOGS_DIR / "basechat.log"
DEBUG_LOG_FILE = LOGS_DIR / "debug_flow.txt"
LOG_FORMAT = "[%(levelname)s %(asctime)s] %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

# Generation Settings
# Both modes share the token budget; only base mode applies the repetition
# penalty (small base models loop on their own output without it).
MAX_NEW_TOKENS = 200
DEFAULT_TEMPERATURE = 0.7
REPETITION_PENALTY = 1.1
MIN_TEMPERATURE = 0.1
MAX_TEMPERATURE = 1.5

# Worker Settings
QUEUE_TIMEOUT_SECONDS = 2.0  # Timeout for multiprocessing queue operations
UI_POLL_INTERVAL_MS = 50     # How often the window drains the worker's event queue
WORKER_TERMINATE_SIGNAL = "TERMINATE"
WORKER_STOP_GRACE_SECONDS = 3.0  # Time a stopping worker gets to finish and free its model

# Model Asset Download
# Only files needed to build a text-generation pipeline are fetched.
MODEL_ALLOW_PATTERNS = [
    "*.json",
    "*.safetensors",
    "*.txt",
    "*.model",
    "*.jinja",
]

# --- Model Configuration System ---
MODEL_TYPES = ("base", "chat")
MODEL_CONFIG_FILE = Path(__file__).parent.parent / "config" / "models.yaml"
MODEL_CONFIGS = {}

# Used when config/models.yaml is missing or does not define a model type
_FALLBACK_MODEL_CONFIGS = {
    'base': {
        'identifier': 'HuggingFaceTB/SmolLM2-360M',
        'precision': 'q4',
        'description': 'Base model (pre-trained)',
    },
    'chat': {
        'identifier': 'HuggingFaceTB/SmolLM2-360M-Instruct',
        'precision': 'q4',
        'description': 'Chat model (RLHF)',
    },
}


def load_model_configs(path: Path = None) -> dict:
    """
    Loads model configurations from config/models.yaml.

    Args:
        path: Optional override of the YAML file location (used by tests).

    Returns:
        dict: model type ('base'/'chat') -> raw config dict
    """
    global MODEL_CONFIGS
    config_path = path or MODEL_CONFIG_FILE
    try:
        with open(config_path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        MODEL_CONFIGS = data.get('models', {}) or {}
        if DEBUG_MODE and MODEL_CONFIGS:
            from basechat.logging_config import debug_log
            debug_log(f"[Config] Loaded {len(MODEL_CONFIGS)} model configurations from {config_path}")
    except FileNotFoundError:
        if DEBUG_MODE:
            from basechat.logging_config import debug_log
            debug_log(f"[Config] WARNING: Model config file not found at {config_path}. Using fallback values.")
        MODEL_CONFIGS = {}
    except (yaml.YAMLError, AttributeError) as e:
        from basechat.logging_config import debug_log
        debug_log(f"[Config] ERROR: Failed to load or parse model config file: {e}")
        MODEL_CONFIGS = {}
    return MODEL_CONFIGS


def get_model_config(model_type: str) -> dict:
    """
    Returns the configuration for a model type, with fallbacks.

    Args:
        model_type: Either 'base' or 'chat'.

    Returns:
        A dictionary with at least 'identifier' and 'precision'.

    Raises:
        KeyError: If model_type is not one of MODEL_TYPES.
    """
    if model_type not in MODEL_TYPES:
        raise KeyError(f"Unknown model type: {model_type!r} (expected one of {', '.join(MODEL_TYPES)})")

    if not MODEL_CONFIGS:
        load_model_configs()

    config = MODEL_CONFIGS.get(model_type)
    if config and config.get('identifier'):
        return {
            'precision': _FALLBACK_MODEL_CONFIGS[model_type]['precision'],
            **config,
        }

    if DEBUG_MODE:
        from basechat.logging_config import debug_log
        debug_log(f"[Config] WARNING: No configuration for '{model_type}'. Using hard-coded fallback values.")
    return dict(_FALLBACK_MODEL_CONFIGS[model_type])


# Load configs on module import
load_model_configs()
