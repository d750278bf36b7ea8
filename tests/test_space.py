"""Tests for distance-space binding."""

import pytest

from hnswbridge.domain.errors import InvalidConfigurationError
from hnswbridge.domain.models import SpaceType
from hnswbridge.services.space import parse_selector, resolve_space


class TestParseSelector:
    @pytest.mark.parametrize(
        "selector, expected",
        [
            ("l2", SpaceType.L2),
            ("IP", SpaceType.IP),
            (" cosine ", SpaceType.COSINE),
            ("euclidean", SpaceType.L2),
            ("inner_product", SpaceType.IP),
            (0, SpaceType.L2),
            (1, SpaceType.IP),
            (2, SpaceType.COSINE),
            (SpaceType.COSINE, SpaceType.COSINE),
        ],
    )
    def test_accepted_forms(self, selector, expected):
        assert parse_selector(selector) is expected

    @pytest.mark.parametrize("selector", ["manhattan", "", 3, -1, True, None, 1.0])
    def test_rejected_forms(self, selector):
        with pytest.raises(InvalidConfigurationError):
            parse_selector(selector)

    def test_error_names_valid_spaces(self):
        with pytest.raises(InvalidConfigurationError, match="l2, ip, or cosine"):
            parse_selector("hamming")


class TestResolveSpace:
    def test_l2_binds_l2_kernel(self):
        space = resolve_space("l2", 16)
        assert space.kernel == "l2"
        assert space.dim == 16
        assert not space.normalize

    def test_ip_does_not_normalize(self):
        space = resolve_space("ip", 4)
        assert space.kernel == "ip"
        assert not space.normalize

    def test_cosine_binds_inner_product_and_normalizes(self):
        space = resolve_space("cosine", 4)
        assert space.kernel == "ip"
        assert space.normalize
        assert space.selector is SpaceType.COSINE

    @pytest.mark.parametrize("dim", [0, -3, 2.5, True])
    def test_invalid_dim(self, dim):
        with pytest.raises(InvalidConfigurationError):
            resolve_space("l2", dim)

    def test_space_is_immutable(self):
        space = resolve_space("l2", 4)
        with pytest.raises(AttributeError):
            space.dim = 8
