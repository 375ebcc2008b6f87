import pytest
import torch

from ar_dof.nodes import ARDepthOfField, ARDofAnalyzer, ARDofPass

OPTIONS = dict(depth_encoding="meters", min_depth=0.0, depth_range=1.0)


@pytest.fixture
def frame(gen):
    image = torch.rand(1, 8, 12, 3, generator=gen)
    depth = torch.zeros(1, 8, 12, 1)
    depth[:, :, 6:] = 0.8
    return image, depth


def test_full_node_outputs(frame):
    image, depth = frame
    out, vis, ramp = ARDepthOfField().run(image, depth, touch_x=0.2, aperture=1.0, **OPTIONS)

    assert out.shape == (1, 8, 12, 3)
    assert vis.shape == (1, 8, 12, 3)
    assert ramp.shape == (1, 8, 12)
    assert out.min() >= 0 and out.max() <= 1
    assert torch.all(ramp[..., :6] == 0)
    assert torch.all(ramp[..., 6:] > 0)


def test_chained_pass_nodes_match_the_full_node(frame):
    image, depth = frame
    kwargs = dict(touch_x=0.2, aperture=1.0, greyscale_peripheral=True, **OPTIONS)

    (full, _, _) = ARDepthOfField().run(image, depth, **kwargs)
    (horizontal,) = ARDofPass().apply_pass(image, depth, direction="horizontal", **kwargs)
    (vertical,) = ARDofPass().apply_pass(horizontal, depth, direction="vertical", **kwargs)

    assert torch.allclose(vertical, full, atol=1e-6)


def test_analyzer_reports_focus_and_sigma(frame):
    _, depth = frame
    defocus_map, sigma, ramp, focus = ARDofAnalyzer().analyze(depth, touch_x=0.9, aperture=0.5, **OPTIONS)

    assert focus == pytest.approx(0.8)
    assert defocus_map.shape == (1, 8, 12, 3)
    assert sigma.shape == ramp.shape == (1, 8, 12)
    # focused on the right half: green there, red/blue elsewhere
    assert torch.all(defocus_map[:, :, 6:, 1] == 1)
    assert torch.all(sigma[..., :6] > sigma[..., 6:])


def test_analyzer_world_anchor_uses_anchor_depth(frame):
    _, depth = frame
    *_, focus = ARDofAnalyzer().analyze(depth, render_mode="world_anchor", anchor_depth=0.25, **OPTIONS)
    assert focus == pytest.approx(0.25)


def test_analyzer_can_invert_relative_depth(frame):
    _, depth = frame
    *_, focus = ARDofAnalyzer().analyze(depth, touch_x=0.9, invert_depth=True, **OPTIONS)
    assert focus == pytest.approx(0.2)


def test_negative_aperture_is_clamped(frame):
    image, depth = frame
    out, _, ramp = ARDepthOfField().run(image, depth, aperture=-1.0, **OPTIONS)
    assert torch.all(ramp == 0)
    assert torch.isfinite(out).all()


def test_malformed_input_raises(frame):
    image, _ = frame
    with pytest.raises(ValueError, match="Invalid input tensor format"):
        ARDepthOfField().run(image, torch.rand(1, 2, 8, 12, 5), **OPTIONS)


def test_default_widgets_spread_sigma_over_a_unit_depth_map():
    depth = torch.linspace(0.0, 1.0, 16).view(1, 1, 16, 1).expand(1, 8, 16, 1).contiguous()
    _, sigma, ramp, focus = ARDofAnalyzer().analyze(depth, touch_x=0.5, aperture=0.5)

    assert 0.4 < focus < 0.6
    saturated = (sigma == sigma.max()).float().mean().item()
    assert saturated < 0.5
    assert torch.unique(sigma).numel() > 4
    assert ramp.min() == 0
