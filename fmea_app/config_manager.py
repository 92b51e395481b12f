import copy
import json
import os

from flask import current_app

DEFAULT_CONFIG = {
    "suggestion_llm_settings": {
        "model": "gemini-1.5-flash",
        "temperature": 0.7
    },
    "explain_llm_settings": {
        "model": "gemini-1.5-flash",
        "temperature": 0.3
    }
}


def _config_file() -> str:
    return current_app.config['LLM_CONFIG_PATH']


def get_config() -> dict:
    """Loads the LLM configuration from the JSON file, using defaults for anything missing."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    path = _config_file()
    if not os.path.exists(path):
        return config
    with open(path, 'r', encoding='utf-8') as f:
        stored = json.load(f)
    for key, value in stored.items():
        if isinstance(value, dict) and isinstance(config.get(key), dict):
            config[key].update(value)
        else:
            config[key] = value
    return config


def set_config(config: dict):
    """Saves the LLM configuration to the JSON file."""
    path = _config_file()
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(config, f, indent=4)
