import math

import pytest
import torch

from ar_dof import DofConfig, build_kernel, discontinuity_decay, estimate_sigma, slow_raise
from ar_dof.filter import defocus_amount


def test_defocus_saturates():
    pixel = torch.tensor([0.0, 0.1, 0.5, -3.0, 9.0])
    out = defocus_amount(pixel, 0.0, aperture=1.0)
    assert torch.allclose(out, torch.tensor([0.0, 0.2, 1.0, 1.0, 1.0]))


def test_slow_raise_has_a_dead_zone():
    x = torch.tensor([0.0, 0.05, 0.0999])
    assert torch.count_nonzero(slow_raise(x, shift=0.1, slope=3.0)) == 0


def test_slow_raise_follows_the_cosine_ramp():
    x = torch.tensor([0.1, 0.3, 0.5])
    expected = torch.tensor([0.0, 1.0 - math.cos(0.6), 1.0 - math.cos(1.2)])
    assert torch.allclose(slow_raise(x, shift=0.1, slope=3.0), expected, atol=1e-6)


def test_slow_raise_is_monotonic_on_the_defocus_axis():
    x = torch.linspace(0.0, 1.0, 201)
    ramp = slow_raise(x)
    assert torch.all(ramp[1:] >= ramp[:-1])


@pytest.mark.parametrize("aperture", [0.0, 0.3, 1.0, 25.0])
def test_defocus_ramp_and_decay_stay_in_unit_range(gen, aperture):
    pixel = torch.randn(1000, generator=gen) * 50
    focus = torch.randn(1000, generator=gen) * 50
    config = DofConfig(aperture=aperture)

    defocus = defocus_amount(pixel, focus, aperture)
    _, ramp = estimate_sigma(pixel, focus, config)
    decay = discontinuity_decay((pixel - focus).abs())

    for values in (defocus, ramp, decay):
        assert torch.isfinite(values).all()
        assert values.min() >= 0.0
        assert values.max() <= 1.0


def test_zero_aperture_gives_the_sigma_floor(gen):
    pixel = torch.rand(64, generator=gen)
    sigma, ramp = estimate_sigma(pixel, 0.5, DofConfig(aperture=0.0, initial_sigma=0.1))
    assert torch.all(ramp == 0)
    assert torch.allclose(sigma, torch.full_like(sigma, 0.1))


def test_sigma_grows_away_from_the_focal_plane():
    config = DofConfig(aperture=0.5)
    pixel = torch.tensor([0.0, 0.3, 1.0])
    sigma, ramp = estimate_sigma(pixel, 0.0, config)

    # |0.3| * 0.5 * 2 = 0.3 on the defocus axis
    expected_ramp = 1.0 - math.cos(3.0 * 0.2)
    assert ramp[0] == 0
    assert ramp[1].item() == pytest.approx(expected_ramp, abs=1e-6)
    assert sigma[1].item() == pytest.approx(0.1 + expected_ramp * 0.5, abs=1e-6)
    assert sigma[0] < sigma[1] < sigma[2]


def test_kernel_matches_the_gaussian():
    sigma = torch.tensor([0.7, 1.5])
    weights = build_kernel(sigma, 3)

    assert weights.shape == (4, 2)
    for j, s in enumerate(sigma.tolist()):
        for i in range(4):
            expected = math.exp(-i * i / (2 * s * s)) / (s * math.sqrt(2 * math.pi))
            assert weights[i, j].item() == pytest.approx(expected, rel=1e-5)


def test_kernel_is_not_normalized_and_falls_off():
    weights = build_kernel(torch.full((2, 3), 1.1), 2)
    assert weights.shape == (3, 2, 3)
    assert torch.all(weights >= 0)
    assert torch.all(weights[0] > weights[1]) and torch.all(weights[1] > weights[2])
    full_sum = weights[0] + 2 * weights[1:].sum(dim=0)
    assert not torch.allclose(full_sum, torch.ones_like(full_sum))


def test_kernel_with_zero_radius_is_the_centre_weight():
    weights = build_kernel(torch.tensor([0.5]), 0)
    assert weights.shape == (1, 1)


def test_decay_is_one_at_equal_depth():
    assert discontinuity_decay(torch.tensor([0.0])).item() == pytest.approx(1.0)


def test_decay_falls_off_with_depth_difference():
    diff = torch.linspace(0.0, 2.0, 101)
    decay = discontinuity_decay(diff, 0.05, 0.05)
    assert torch.all(decay[1:] <= decay[:-1])
    assert discontinuity_decay(torch.tensor([1.0])).item() < 1e-6


def test_decay_leak_across_small_depth_steps():
    # sigma == cutoff == 0.05: one tap keeps ~9% of its weight at 4x cutoff
    at_four = discontinuity_decay(torch.tensor([0.2]), 0.05, 0.05).item()
    assert at_four == pytest.approx(5 * math.exp(-4), rel=1e-4)
    assert discontinuity_decay(torch.tensor([0.3]), 0.05, 0.05).item() > 0.01
    assert discontinuity_decay(torch.tensor([0.35]), 0.05, 0.05).item() < 0.01


def test_decay_is_zero_below_the_cutoff_when_sigma_is_smaller():
    decay = discontinuity_decay(torch.tensor([0.0, 0.1]), sigma=0.01, cutoff=0.5)
    assert torch.all(decay == 0)


def test_decay_survives_huge_differences():
    decay = discontinuity_decay(torch.tensor([1e30, 3e38]))
    assert torch.all(decay == 0)
