"""
Scoring utility functions.
Loads the eligibility rubric (thresholds and window) from YAML, including named presets.
"""
from typing import Dict, Any, Optional
import os
import yaml
from .criteria import Requirements, DEFAULT_REQUIREMENTS

# filename used for rubric YAML configuration
REQUIREMENTS_FILENAME = 'requirements.yaml'

REQUIREMENT_KEYS = ('min_stars', 'min_merged_prs', 'min_external_contributors', 'min_user_prs', 'days')


def default_requirements_path() -> str:
    return os.path.join(os.path.dirname(os.path.dirname(__file__)), 'config', REQUIREMENTS_FILENAME)


def _read_yaml(path: str) -> Dict[str, Any]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            doc = yaml.safe_load(f) or {}
    except yaml.YAMLError as ex:
        raise ValueError(f"Failed to parse rubric file {path}: {ex}")
    if not isinstance(doc, dict):
        raise ValueError(f"Rubric file {path} must contain a mapping")
    return doc


def _as_threshold(key: str, value: Any) -> int:
    # thresholds are whole counts; 2.0 is accepted, 2.5 and true are not
    if isinstance(value, bool):
        raise ValueError(f"Requirement {key} must be an integer, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Requirement {key} must be an integer, got {value!r}")
    if not number.is_integer():
        raise ValueError(f"Requirement {key} must be an integer, got {value!r}")
    return int(number)


def requirements_from_mapping(data: Dict[str, Any], base: Requirements = DEFAULT_REQUIREMENTS) -> Requirements:
    """Overlay known rubric keys from data onto base. Unknown keys are ignored; invalid values raise ValueError."""
    values = {k: getattr(base, k) for k in REQUIREMENT_KEYS}
    for k in REQUIREMENT_KEYS:
        if k in data and data[k] is not None:
            values[k] = _as_threshold(k, data[k])
    return Requirements(**values)


def load_requirements(path: Optional[str] = None) -> Requirements:
    """
    Load the rubric from a YAML file if it exists, otherwise return the defaults.
    A file that exists but cannot be parsed raises ValueError.
    """
    path = path or default_requirements_path()
    if not os.path.exists(path):
        return DEFAULT_REQUIREMENTS
    return requirements_from_mapping(_read_yaml(path))


def load_preset(preset_name: str, path: Optional[str] = None) -> Requirements:
    """
    Return the rubric for a named preset.

    The top-level rubric is loaded first and the preset's values are overlaid on it.
    Raises ValueError if the file or the preset does not exist.

    Example:
        strict = load_preset('strict')
    """
    path = path or default_requirements_path()
    if not os.path.exists(path):
        raise ValueError(f"Rubric config file not found at: {path}")
    doc = _read_yaml(path)
    presets = doc.get('presets') or {}
    if not isinstance(presets, dict) or preset_name not in presets:
        raise ValueError(f"Preset '{preset_name}' not found in {path}")
    base = requirements_from_mapping(doc)
    return requirements_from_mapping(presets.get(preset_name) or {}, base=base)


def list_presets(path: Optional[str] = None) -> list:
    """Return the preset names defined in the rubric YAML (or an empty list when there is no file)."""
    path = path or default_requirements_path()
    if not os.path.exists(path):
        return []
    presets = _read_yaml(path).get('presets') or {}
    return list(presets.keys()) if isinstance(presets, dict) else []
