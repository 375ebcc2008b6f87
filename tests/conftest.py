import pytest
import torch

from ar_dof import DepthEncoding, DofConfig, RenderMode


@pytest.fixture
def gen():
    return torch.Generator().manual_seed(1234)


@pytest.fixture
def meters_config():
    """Config over a depth texture that already holds normalized metres."""
    def make(**overrides):
        values = dict(
            render_mode=RenderMode.FOCUS_ON_SCREEN_POINT,
            min_depth=0.0,
            depth_range=1.0,
            aperture=1.0,
            depth_encoding=DepthEncoding.METERS,
        )
        values.update(overrides)
        return DofConfig(**values)
    return make


@pytest.fixture
def step_depth():
    """Depth with a vertical step edge in the middle of the frame."""
    def make(height=4, width=8, near=0.0, far=1.0):
        d = torch.full((1, 1, height, width), near)
        d[..., width // 2:] = far
        return d
    return make


@pytest.fixture
def split_color():
    """Red on the left half, blue on the right half, (1,3,H,W)."""
    def make(height=4, width=8):
        img = torch.zeros(1, 3, height, width)
        img[:, 0, :, : width // 2] = 1.0
        img[:, 2, :, width // 2:] = 1.0
        return img
    return make
