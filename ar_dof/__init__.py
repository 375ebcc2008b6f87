from .config import DepthEncoding, DepthUvRemap, DofConfig, RenderMode
from .filter import (
    DofFrameResult, DofPassResult, build_kernel, convolve, decode_depth_meters,
    delinearize, depth_from_millimeters, desaturate_peripheral, discontinuity_decay,
    estimate_sigma, linearize, pass_steps, remap_depth_uv, render_frame, render_pass,
    resolve_focus_depth, sample_depth_meters, sample_depth_normalized, slow_raise,
)

__all__ = [
    "DepthEncoding", "DepthUvRemap", "DofConfig", "RenderMode",
    "DofFrameResult", "DofPassResult", "build_kernel", "convolve", "decode_depth_meters",
    "delinearize", "depth_from_millimeters", "desaturate_peripheral", "discontinuity_decay",
    "estimate_sigma", "linearize", "pass_steps", "remap_depth_uv", "render_frame", "render_pass",
    "resolve_focus_depth", "sample_depth_meters", "sample_depth_normalized", "slow_raise",
]
