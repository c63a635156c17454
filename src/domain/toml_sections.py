"""Mapping layer between flat PrefetchOptions fields and sectioned TOML format.

PrefetchOptions remains a flat Pydantic model. This module provides two functions:
- flat_to_sectioned(): flat dict → sectioned dict (for TOML save)
- sectioned_to_flat(): sectioned dict → flat dict (for TOML load)
"""

from __future__ import annotations

# {section_name: {flat_field_name: short_name_in_toml}}
SECTION_MAP: dict[str, dict[str, str]] = {
    'scheduler': {
        'max_concurrent_prefetches': 'max_concurrent',
        'tick_interval': 'tick_interval',
        'idle_delay': 'idle_delay',
        'idle_timeout': 'idle_timeout',
        'enabled': 'enabled',
    },
    'planner': {
        'spatial_buffer_factor': 'buffer_factor',
        'load_active_during_interaction': 'load_active_during_interaction',
    },
}

# Section holding the category weights table as-is
PRIORITIES_SECTION = 'priorities'

# Reverse index: flat_field → (section, short_name)
_FLAT_TO_SECTION: dict[str, tuple[str, str]] = {}
for _section, _fields in SECTION_MAP.items():
    for _flat, _short in _fields.items():
        _FLAT_TO_SECTION[_flat] = (_section, _short)

# Reverse index: (section, short_name) → flat_field
_SECTION_TO_FLAT: dict[str, dict[str, str]] = {}
for _section, _fields in SECTION_MAP.items():
    _SECTION_TO_FLAT[_section] = {v: k for k, v in _fields.items()}


def flat_to_sectioned(flat: dict) -> dict:
    """Convert flat PrefetchOptions dict to sectioned dict for TOML output."""
    result: dict = {}
    for key, value in flat.items():
        if key == 'category_priorities':
            result[PRIORITIES_SECTION] = {
                getattr(k, 'value', k): v for k, v in dict(value).items()
            }
        elif key in _FLAT_TO_SECTION:
            section, short_name = _FLAT_TO_SECTION[key]
            result.setdefault(section, {})[short_name] = value
        else:
            result.setdefault('common', {})[key] = value
    return result


def sectioned_to_flat(data: dict) -> dict:
    """Convert sectioned TOML dict to flat dict for PrefetchOptions validation."""
    flat: dict = {}
    for key, value in data.items():
        if key == PRIORITIES_SECTION and isinstance(value, dict):
            flat['category_priorities'] = dict(value)
        elif isinstance(value, dict) and key in _SECTION_TO_FLAT:
            # Known section: expand short names to flat names
            mapping = _SECTION_TO_FLAT[key]
            for short_name, field_value in value.items():
                flat[mapping.get(short_name, short_name)] = field_value
        elif isinstance(value, dict):
            # common or unknown section: pass through keys as-is
            flat.update(value)
        else:
            # Top-level key (flat TOML)
            flat[key] = value
    return flat
