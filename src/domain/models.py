from typing import Any

from pydantic import BaseModel, field_validator

from shared.constants import (
    IDLE_DELAY_S,
    IDLE_TIMEOUT_S,
    LOAD_ACTIVE_DURING_INTERACTION,
    MAX_CONCURRENT_PREFETCHES,
    SPATIAL_BUFFER_FACTOR,
    TICK_INTERVAL_S,
    PrefetchCategory,
)


class PrefetchOptions(BaseModel):
    """Construction-time configuration of the prefetch engine."""

    model_config = {
        'extra': 'ignore',  # profiles may carry keys of newer versions
    }

    # Multiplier of the visible extent for the active layer's offscreen ring
    spatial_buffer_factor: float = SPATIAL_BUFFER_FACTOR
    # Maximum number of prefetch loads outstanding at once
    max_concurrent_prefetches: int = MAX_CONCURRENT_PREFETCHES
    # Debounce after the last move end (seconds)
    idle_delay: float = IDLE_DELAY_S
    # Scheduler tick interval (seconds)
    tick_interval: float = TICK_INTERVAL_S
    # Safety timeout of idle subscriptions (seconds)
    idle_timeout: float = IDLE_TIMEOUT_S
    enabled: bool = True
    # Keep the active layer's offscreen tiles loading during pan/zoom
    load_active_during_interaction: bool = LOAD_ACTIVE_DURING_INTERACTION
    # Partial override of the default category weights
    category_priorities: dict[PrefetchCategory, float] = {}

    @field_validator('spatial_buffer_factor')
    @classmethod
    def validate_buffer_factor(cls, v: float | str) -> float:
        v = float(v)
        if v < 1.0:
            msg = 'spatial_buffer_factor must be >= 1.0'
            raise ValueError(msg)
        return v

    @field_validator('max_concurrent_prefetches')
    @classmethod
    def validate_max_concurrent(cls, v: int | str) -> int:
        v = int(v)
        if v < 1:
            msg = 'max_concurrent_prefetches must be a positive integer'
            raise ValueError(msg)
        return v

    @field_validator('idle_delay')
    @classmethod
    def validate_idle_delay(cls, v: float | str) -> float:
        v = float(v)
        if v < 0:
            msg = 'idle_delay cannot be negative'
            raise ValueError(msg)
        return v

    @field_validator('tick_interval', 'idle_timeout')
    @classmethod
    def validate_positive_interval(cls, v: float | str) -> float:
        v = float(v)
        if v <= 0:
            msg = 'Interval must be greater than zero'
            raise ValueError(msg)
        return v

    @field_validator('category_priorities', mode='before')
    @classmethod
    def validate_category_priorities(cls, v: Any) -> dict[PrefetchCategory, float]:
        if v is None:
            return {}
        result: dict[PrefetchCategory, float] = {}
        for key, value in dict(v).items():
            category = PrefetchCategory.parse(key)
            if category is None:
                msg = f'Unknown prefetch category: {key!r}'
                raise ValueError(msg)
            result[category] = float(value)
        return result
