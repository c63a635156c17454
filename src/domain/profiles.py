import logging
from pathlib import Path

import tomlkit

from domain.models import PrefetchOptions
from domain.toml_sections import flat_to_sectioned, sectioned_to_flat
from shared.constants import PROFILES_DIR

logger = logging.getLogger(__name__)


def ensure_profiles_dir(base_dir: str | Path | None = None) -> Path:
    profiles_dir = Path(base_dir or PROFILES_DIR)
    profiles_dir.mkdir(parents=True, exist_ok=True)
    return profiles_dir


def list_profiles(base_dir: str | Path | None = None) -> list[str]:
    """Profile names without the .toml extension."""
    folder = ensure_profiles_dir(base_dir)
    return sorted(p.stem for p in folder.glob('*.toml') if p.is_file())


def profile_path(name: str, base_dir: str | Path | None = None) -> Path:
    return ensure_profiles_dir(base_dir) / f'{name}.toml'


def load_options(
    name_or_path: str | Path,
    base_dir: str | Path | None = None,
) -> PrefetchOptions:
    """
    Load and validate a TOML profile into PrefetchOptions.

    Accepts either a profile name (looked up in the profiles directory) or a
    path to a .toml file.
    """
    p = Path(name_or_path)
    path = (
        p
        if p.suffix.lower() == '.toml' and p.exists()
        else profile_path(str(name_or_path), base_dir)
    )
    if not path.exists():
        msg = f'Profile not found: {path}'
        raise FileNotFoundError(msg)
    data = tomlkit.parse(path.read_text(encoding='utf-8')).unwrap()
    options = PrefetchOptions.model_validate(sectioned_to_flat(data))
    logger.info('Loaded prefetch profile %s', path)
    return options


def save_options(
    name: str,
    options: PrefetchOptions,
    base_dir: str | Path | None = None,
) -> Path:
    """Write a profile as sectioned TOML (no atomic replace, no backups)."""
    path = profile_path(name, base_dir)
    data = flat_to_sectioned(options.model_dump(mode='json'))
    path.write_text(tomlkit.dumps(data), encoding='utf-8')
    return path


def delete_profile(name: str, base_dir: str | Path | None = None) -> None:
    path = profile_path(name, base_dir)
    if path.exists():
        path.unlink()
