"""Configuration handling for the NIM proxy."""

import copy
import logging
import os
from pathlib import Path
from typing import Dict, Any

import yaml
from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

relay_logger = logging.getLogger("relay")
relay_logger.setLevel(logging.INFO)

DEFAULT_CONFIG: Dict[str, Any] = {
    "upstream": {"url": "https://integrate.api.nvidia.com/v1"},
    "model_mapping": {
        "gpt-3.5-turbo": "nvidia/llama-3.1-nemotron-ultra-253b-v1",
        "gpt-4": "qwen/qwen3-coder-480b-a35b-instruct",
        "gpt-4-turbo": "moonshotai/kimi-k2-instruct-0905",
        "gpt-4o": "deepseek-ai/deepseek-v3.1",
        "claude-3-opus": "openai/gpt-oss-120b",
        "claude-3-sonnet": "openai/gpt-oss-20b",
        "gemini-pro": "qwen/qwen3-next-80b-a3b-thinking",
    },
    "fallback_rules": [
        {"match": ["gpt-4", "opus", "405b"], "model": "meta/llama-3.1-405b-instruct"},
        {"match": ["claude", "gemini", "70b"], "model": "meta/llama-3.1-70b-instruct"},
    ],
    "default_model": "meta/llama-3.1-8b-instruct",
    "defaults": {"temperature": 0.6, "max_tokens": 9024},
    "reasoning": {"show_reasoning": False, "thinking_mode": False},
    "settings": {"timeout": 60, "reframe_stream": True, "log_file": ""},
}

# Sections merged key by key; every other section replaces the default whole.
SETTINGS_SECTIONS = ("upstream", "defaults", "reasoning", "settings")


def _merge(defaults: Dict[str, Any], loaded: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, value in loaded.items():
        if value is None:
            continue
        if key in SETTINGS_SECTIONS and isinstance(value, dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def load_config():
    """
    Load configuration from config.yaml file.
    Returns a dictionary with every section present, missing keys taken
    from DEFAULT_CONFIG.
    """
    try:
        config_path = Path(__file__).parent.parent.parent / "config.yaml"
        config_yaml = config_path.read_text()
        loaded = yaml.safe_load(config_yaml) or {}
        if not isinstance(loaded, dict):
            raise ValueError("config.yaml must contain a mapping")
        logger.info("Successfully loaded configuration from config.yaml")
        return _merge(DEFAULT_CONFIG, loaded)
    except (OSError, yaml.YAMLError, ValueError) as e:
        logger.error(f"Error loading config.yaml: {str(e)}")
        return copy.deepcopy(DEFAULT_CONFIG)


config = load_config()

MODEL_MAPPING: Dict[str, str] = dict(config["model_mapping"])
FALLBACK_RULES = list(config["fallback_rules"])
DEFAULT_MODEL = config["default_model"]

DEFAULT_TEMPERATURE = config["defaults"].get("temperature", 0.6)
DEFAULT_MAX_TOKENS = config["defaults"].get("max_tokens", 9024)

SHOW_REASONING = bool(config["reasoning"].get("show_reasoning", False))
ENABLE_THINKING_MODE = bool(config["reasoning"].get("thinking_mode", False))

TIMEOUT = config["settings"].get("timeout", 60)
REFRAME_STREAM = bool(config["settings"].get("reframe_stream", True))

PORT = int(os.getenv("PORT", "3000"))
NIM_API_BASE = os.getenv("NIM_API_BASE") or config["upstream"].get("url", "")
NIM_API_KEY = os.getenv("NIM_API_KEY", "")

if not NIM_API_BASE:
    logger.warning("Upstream URL not set, using default value")
    NIM_API_BASE = DEFAULT_CONFIG["upstream"]["url"]
NIM_API_BASE = NIM_API_BASE.rstrip("/")

if not NIM_API_KEY:
    logger.warning("NIM_API_KEY not set, the client Authorization header will be forwarded")

log_file = config["settings"].get("log_file")
if log_file and not relay_logger.handlers:
    log_path = Path(log_file)
    os.makedirs(log_path.parent, exist_ok=True)
    file_handler = logging.FileHandler(str(log_path), mode="a")
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    )
    relay_logger.addHandler(file_handler)
    relay_logger.propagate = True
