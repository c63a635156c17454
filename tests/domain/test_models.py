"""Tests for PrefetchOptions validation."""

import pytest
from pydantic import ValidationError

from domain.models import PrefetchOptions
from shared.constants import (
    IDLE_DELAY_S,
    MAX_CONCURRENT_PREFETCHES,
    SPATIAL_BUFFER_FACTOR,
    TICK_INTERVAL_S,
    PrefetchCategory,
)


class TestDefaults:
    def test_defaults_match_constants(self):
        options = PrefetchOptions()
        assert options.spatial_buffer_factor == SPATIAL_BUFFER_FACTOR
        assert options.max_concurrent_prefetches == MAX_CONCURRENT_PREFETCHES
        assert options.idle_delay == IDLE_DELAY_S
        assert options.tick_interval == TICK_INTERVAL_S
        assert options.enabled is True
        assert options.load_active_during_interaction is True
        assert options.category_priorities == {}

    def test_unknown_keys_are_ignored(self):
        options = PrefetchOptions(future_option=1)
        assert not hasattr(options, 'future_option')


class TestValidators:
    def test_buffer_factor_below_one(self):
        with pytest.raises(ValidationError):
            PrefetchOptions(spatial_buffer_factor=0.5)

    def test_buffer_factor_from_string(self):
        assert PrefetchOptions(spatial_buffer_factor='2').spatial_buffer_factor == 2.0

    def test_max_concurrent_must_be_positive(self):
        with pytest.raises(ValidationError):
            PrefetchOptions(max_concurrent_prefetches=0)

    def test_negative_idle_delay(self):
        with pytest.raises(ValidationError):
            PrefetchOptions(idle_delay=-1)

    def test_zero_idle_delay_allowed(self):
        assert PrefetchOptions(idle_delay=0).idle_delay == 0

    @pytest.mark.parametrize('field', ['tick_interval', 'idle_timeout'])
    def test_intervals_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            PrefetchOptions(**{field: 0})


class TestCategoryPriorities:
    def test_accepts_values_and_members(self):
        options = PrefetchOptions(
            category_priorities={'bgViewport': 3, PrefetchCategory.NEXT_NAV_ACTIVE: '2.5'},
        )
        assert options.category_priorities == {
            PrefetchCategory.BACKGROUND_LAYERS_VIEWPORT: 3.0,
            PrefetchCategory.NEXT_NAV_ACTIVE: 2.5,
        }

    def test_unknown_category_rejected(self):
        with pytest.raises(ValidationError, match='Unknown prefetch category'):
            PrefetchOptions(category_priorities={'teleport': 1})

    def test_none_means_empty(self):
        assert PrefetchOptions(category_priorities=None).category_priorities == {}

    def test_json_dump_uses_wire_keys(self):
        dumped = PrefetchOptions(category_priorities={'spatial': 2}).model_dump(mode='json')
        assert dumped['category_priorities'] == {'spatial': 2.0}
