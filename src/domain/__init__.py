"""Domain layer - engine options and profiles."""
from domain.models import PrefetchOptions
from domain.profiles import (
    delete_profile,
    ensure_profiles_dir,
    list_profiles,
    load_options,
    save_options,
)

__all__ = [
    'PrefetchOptions',
    'delete_profile',
    'ensure_profiles_dir',
    'list_profiles',
    'load_options',
    'save_options',
]
