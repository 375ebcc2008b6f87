# filter.py
# Depth-aware separable depth-of-field for AR camera frames.
#
# Each output pixel derives its own Gaussian sigma from how far its depth sits
# from the focus depth, then blends a short 1-D neighbourhood along the pass
# direction. Taps across a depth edge are decayed away so foreground and
# background do not bleed into each other. Blending happens in linear light.
#
# A frame is two calls of the same pure pass: horizontal, then vertical on the
# horizontal output. Every per-pixel step below is a batched tensor op over
# the whole (B, H, W) pixel domain.

import logging
import math
from dataclasses import dataclass
from typing import Tuple

import torch
import torch.nn.functional as F

from .config import DepthEncoding, DepthUvRemap, DofConfig, RenderMode
from .log import get_logger

logger = get_logger(__name__)

# 16-bit fixed point millimetres, sensor ceiling 8192 mm
DEPTH_RAW_SCALE = 65535.0
DEPTH_MAX_MM = 8192.0
MM_TO_METERS = 0.001

LUMINANCE = (0.30, 0.59, 0.11)
PERIPHERAL_DESATURATION = 0.5

_WEIGHT_EPS = 1e-8


# ---------- shape helpers ----------
def _as_bchw(x: torch.Tensor) -> torch.Tensor:
    """
    Normalize a colour input to (B, C, H, W).
    Accepts: (H,W,C), (B,H,W,C), (B,C,H,W) with C in (1, 3).
    """
    if x.dim() == 3 and x.size(-1) in (1, 3):
        return x.unsqueeze(0).permute(0, 3, 1, 2).contiguous()
    if x.dim() == 3 and x.size(0) in (1, 3):
        return x.unsqueeze(0).contiguous()

    if x.dim() == 4:
        # BHWC -> BCHW
        if x.size(-1) in (1, 3) and x.size(1) not in (1, 3):
            return x.permute(0, 3, 1, 2).contiguous()
        return x.contiguous()

    raise ValueError(f"Expected an image tensor with 3 or 4 dims, got shape {tuple(x.shape)}")


def _to_bhwc(x: torch.Tensor) -> torch.Tensor:
    return x.permute(0, 2, 3, 1).contiguous()


def depth_from_millimeters(mm: torch.Tensor) -> torch.Tensor:
    """Raw 16-bit millimetre samples -> the normalized [0,1] encoding the sampler decodes."""
    return mm.to(torch.float32) / DEPTH_RAW_SCALE


def _ensure_depth(d: torch.Tensor) -> torch.Tensor:
    """
    Normalize a depth input to (B,1,H,W).

    Integer buffers are taken as raw millimetres. Three-channel depth images
    are collapsed with standard luminance weights.
    """
    if not torch.is_floating_point(d):
        d = depth_from_millimeters(d)

    if d.dim() == 2:
        d = d.unsqueeze(0).unsqueeze(0)
    elif d.dim() == 3:
        # (H,W,C) or (B,H,W)
        d = d.unsqueeze(0).permute(0, 3, 1, 2) if d.size(-1) in (1, 3) else d.unsqueeze(1)
    elif d.dim() == 4 and d.size(-1) in (1, 3) and d.size(1) not in (1, 3):
        d = d.permute(0, 3, 1, 2)
    elif d.dim() != 4:
        raise ValueError(f"Expected a depth tensor with 2-4 dims, got shape {tuple(d.shape)}")

    if d.size(1) == 3:
        r, g, b = d[:, 0:1], d[:, 1:2], d[:, 2:3]
        d = 0.299 * r + 0.587 * g + 0.114 * b
    elif d.size(1) != 1:
        raise ValueError(f"Depth must have 1 or 3 channels, got shape {tuple(d.shape)}")
    return d.contiguous()


def _prepare_inputs(color: torch.Tensor, depth: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
    img = _as_bchw(color)
    if not torch.is_floating_point(img):
        img = img.to(torch.float32) / 255.0
    if img.size(1) != 3:
        raise ValueError(f"Colour frame must have 3 channels, got shape {tuple(color.shape)}")

    d = _ensure_depth(depth).to(device=img.device, dtype=img.dtype)
    if d.size(0) == 1 and img.size(0) > 1:
        d = d.repeat(img.size(0), 1, 1, 1)
    elif d.size(0) != img.size(0):
        raise ValueError(f"Colour and depth batch sizes must match. Colour: {tuple(img.shape)}, Depth: {tuple(d.shape)}")
    return img, d


def pixel_uv(batch: int, height: int, width: int, device=None, dtype=torch.float32) -> torch.Tensor:
    """Texel-centre UV grid (B,H,W,2), u along width, v along height."""
    ys = (torch.arange(height, device=device, dtype=dtype) + 0.5) / height
    xs = (torch.arange(width, device=device, dtype=dtype) + 0.5) / width
    v, u = torch.meshgrid(ys, xs, indexing="ij")
    return torch.stack([u, v], dim=-1).unsqueeze(0).expand(batch, -1, -1, -1)


def _fetch(tex: torch.Tensor, uv: torch.Tensor, mode: str = "bilinear") -> torch.Tensor:
    # clamp-to-edge addressing, texel centres at (i + 0.5) / size
    return F.grid_sample(tex, uv * 2.0 - 1.0, mode=mode, padding_mode="border", align_corners=False)


def symmetric_coords(uv: torch.Tensor, aspect_ratio) -> torch.Tensor:
    """UV in [0,1] -> [-1,1] scaled per axis so distances are isotropic on screen."""
    return (uv * 2.0 - 1.0) * uv.new_tensor(aspect_ratio)


# ---------- depth sampling ----------
def remap_depth_uv(uv: torch.Tensor, remap: DepthUvRemap) -> torch.Tensor:
    u, v = uv[..., 0:1], uv[..., 1:2]
    tl, tr = uv.new_tensor(remap.top_left), uv.new_tensor(remap.top_right)
    bl, br = uv.new_tensor(remap.bottom_left), uv.new_tensor(remap.bottom_right)
    top = torch.lerp(tl.expand_as(uv), tr.expand_as(uv), u)
    bottom = torch.lerp(bl.expand_as(uv), br.expand_as(uv), u)
    return torch.lerp(top, bottom, v)


def decode_depth_meters(raw: torch.Tensor, encoding: DepthEncoding = DepthEncoding.MILLIMETERS_16) -> torch.Tensor:
    if encoding is DepthEncoding.METERS:
        return raw
    mm = (raw * DEPTH_RAW_SCALE).clamp(0.0, DEPTH_MAX_MM)
    return mm * MM_TO_METERS


def sample_depth_meters(depth: torch.Tensor, uv: torch.Tensor, config: DofConfig) -> torch.Tensor:
    """Depth in metres (B,H,W) at colour-frame UVs (B,H,W,2)."""
    raw = _fetch(depth, remap_depth_uv(uv, config.depth_uv_remap))[:, 0]
    return decode_depth_meters(raw, config.depth_encoding)


def sample_depth_normalized(depth: torch.Tensor, uv: torch.Tensor, config: DofConfig) -> torch.Tensor:
    return (sample_depth_meters(depth, uv, config) - config.min_depth) / config.depth_range


# ---------- focus ----------
def resolve_focus_depth(depth: torch.Tensor, config: DofConfig) -> torch.Tensor:
    """
    In-focus depth per batch item, shape (B,).

    World-anchor focus takes the host supplied depth in touch_position.z.
    Screen and projected point focus both read the depth under the touch
    point; they differ only in how the host computed that point.
    """
    batch = depth.size(0)
    if config.render_mode == RenderMode.FOCUS_ON_WORLD_ANCHOR:
        return depth.new_full((batch,), config.touch_position[2])

    touch_uv = depth.new_tensor(config.touch_position[:2]).view(1, 1, 1, 2).expand(batch, 1, 1, 2)
    return sample_depth_normalized(depth, touch_uv, config).view(batch)


# ---------- blur parameters ----------
def defocus_amount(pixel_depth, focus_depth, aperture: float) -> torch.Tensor:
    return ((pixel_depth - focus_depth).abs() * aperture * 2.0).clamp(0.0, 1.0)


def slow_raise(x: torch.Tensor, shift: float = 0.1, slope: float = 3.0) -> torch.Tensor:
    """Zero up to ``shift``, then a cosine ramp towards 1."""
    t = x - shift
    ramp = (t >= 0).to(x.dtype) * (1.0 - torch.cos(slope * t))
    return ramp.clamp(0.0, 1.0)


def estimate_sigma(pixel_depth, focus_depth, config: DofConfig) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Per-pixel Gaussian sigma from the distance to the focal plane.

    Returns:
        sigma: kernel standard deviation in taps, >= initial_sigma
        ramp: shaped defocus in [0,1], reused for peripheral desaturation
    """
    defocus = defocus_amount(pixel_depth, focus_depth, config.aperture)
    ramp = slow_raise(defocus, config.ramp_shift, config.ramp_slope)
    sigma = config.initial_sigma + ramp * config.aperture
    return sigma, ramp


def build_kernel(sigma: torch.Tensor, half_radius: int) -> torch.Tensor:
    """
    Half-kernel Gaussian weights for tap distances 0..half_radius.

    Returns (half_radius + 1, *sigma.shape). Weights are not normalized; the
    convolution divides by the weight it actually accumulated.
    """
    offsets = torch.arange(half_radius + 1, device=sigma.device, dtype=sigma.dtype)
    offsets = offsets.view(-1, *([1] * sigma.dim()))
    return torch.exp(-offsets * offsets / (2.0 * sigma * sigma)) / (sigma * math.sqrt(2.0 * math.pi))


def blur_parameters(depth: torch.Tensor, uv: torch.Tensor, config: DofConfig):
    """Centre depth, focus depth, sigma and ramp for every pixel of ``uv``."""
    center_depth = sample_depth_normalized(depth, uv, config)
    focus_depth = resolve_focus_depth(depth, config).view(-1, 1, 1)
    sigma, ramp = estimate_sigma(center_depth, focus_depth, config)
    return center_depth, focus_depth, sigma, ramp


# ---------- convolution ----------
def linearize(c: torch.Tensor, gamma: float = 2.2) -> torch.Tensor:
    return c.clamp(0.0, 1.0).pow(gamma)


def delinearize(c: torch.Tensor, gamma: float = 2.2) -> torch.Tensor:
    return c.clamp(0.0, 1.0).pow(1.0 / gamma)


def discontinuity_decay(diff: torch.Tensor, sigma: float = 0.05, cutoff: float = 0.05) -> torch.Tensor:
    """1 at zero depth difference, falling to ~0 once ``diff`` passes the cutoff."""
    x = diff + sigma
    y = x * (x >= cutoff).to(x.dtype) / sigma
    # exp(1 - y) * y is already 0 in float32 long before this bound
    y = y.clamp(max=1e4)
    return torch.exp(1.0 - y) * y


def convolve(color: torch.Tensor, depth: torch.Tensor, uv: torch.Tensor, center_depth: torch.Tensor,
             dir_step, weights: torch.Tensor, config: DofConfig) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Edge-aware 1-D Gaussian along ``dir_step``.

    Args:
        color: sRGB colour source (B,3,H,W)
        depth: raw depth texture (B,1,Hd,Wd)
        uv: centre UVs (B,H,W,2)
        center_depth: normalized depth at ``uv`` (B,H,W)
        dir_step: UV offset between neighbouring taps
        weights: half-kernel from build_kernel, (K+1,B,H,W)

    Returns:
        Linear-light colour sum (B,3,H,W) and accumulated weight (B,1,H,W).
    """
    half_radius = weights.size(0) - 1
    step = uv.new_tensor(dir_step)

    sum_color = torch.zeros_like(color)
    sum_weights = color.new_zeros((color.size(0), 1) + color.shape[2:])
    for i in range(-half_radius, half_radius + 1):
        sample_uv = uv + step * i
        tap = weights[abs(i)]
        if config.edge_aware:
            sample_depth = sample_depth_normalized(depth, sample_uv, config)
            diff = (center_depth - sample_depth).abs()
            tap = tap * discontinuity_decay(diff, config.occlusion_sigma, config.occlusion_cutoff)
        tap = tap.unsqueeze(1)

        sum_color = sum_color + tap * linearize(_fetch(color, sample_uv), config.gamma)
        sum_weights = sum_weights + tap
    return sum_color, sum_weights


def normalize_accumulation(sum_color: torch.Tensor, sum_weights: torch.Tensor,
                           fallback: torch.Tensor) -> torch.Tensor:
    """sum_color / sum_weights, or ``fallback`` where the weight underflowed."""
    ok = sum_weights > _WEIGHT_EPS
    return torch.where(ok, sum_color / sum_weights.clamp(min=_WEIGHT_EPS), fallback)


# ---------- post-processing ----------
def desaturate_peripheral(rgb: torch.Tensor, ramp: torch.Tensor) -> torch.Tensor:
    amount = (ramp * PERIPHERAL_DESATURATION).clamp(0.0, 1.0).unsqueeze(1)
    grey = (rgb * rgb.new_tensor(LUMINANCE).view(1, 3, 1, 1)).sum(dim=1, keepdim=True)
    return torch.lerp(rgb, grey.expand_as(rgb), amount)


def peripheral_desaturation_enabled(config: DofConfig) -> bool:
    return (config.greyscale_peripheral
            and config.is_final_pass
            and config.render_mode != RenderMode.FOCUS_ON_WORLD_ANCHOR)


def defocus_overlay(center_depth: torch.Tensor, focus_depth: torch.Tensor, ramp: torch.Tensor) -> torch.Tensor:
    """Green in focus, red behind the focal plane, blue in front of it."""
    behind = (center_depth > focus_depth).to(ramp.dtype)
    in_front = (center_depth < focus_depth).to(ramp.dtype)
    overlay = torch.stack([ramp * behind, 1.0 - ramp, ramp * in_front], dim=1)
    return overlay.clamp(0, 1)


def debug_visualization(image: torch.Tensor, center_depth: torch.Tensor, focus_depth: torch.Tensor,
                        ramp: torch.Tensor, uv: torch.Tensor, config: DofConfig,
                        opacity: float = 0.6, ring_radius: float = 0.06, ring_width: float = 0.012) -> torch.Tensor:
    overlay = defocus_overlay(center_depth, focus_depth, ramp)

    # focus marker, round in screen space thanks to aspect_ratio
    coords = symmetric_coords(uv, config.aspect_ratio)
    touch = symmetric_coords(uv.new_tensor(config.touch_position[:2]), config.aspect_ratio)
    dist = (coords - touch).norm(dim=-1)
    ring = ((dist - ring_radius).abs() <= ring_width).unsqueeze(1)
    overlay = torch.where(ring, torch.ones_like(overlay), overlay)

    vis = (1.0 - opacity) * image + opacity * overlay
    return vis.clamp(0, 1)


# ---------- passes ----------
@dataclass
class DofPassResult:
    image: torch.Tensor         # (B,3,H,W) sRGB
    depth: torch.Tensor         # (B,H,W) normalized centre depth
    sigma: torch.Tensor         # (B,H,W)
    ramp: torch.Tensor          # (B,H,W)
    focus_depth: torch.Tensor   # (B,)


@dataclass
class DofFrameResult:
    image: torch.Tensor
    horizontal: torch.Tensor    # first pass output, input of the second
    depth: torch.Tensor
    sigma: torch.Tensor
    ramp: torch.Tensor
    focus_depth: torch.Tensor


@torch.no_grad()
def render_pass(color: torch.Tensor, depth: torch.Tensor, config: DofConfig) -> DofPassResult:
    """
    One separable pass over the whole frame along ``config.blur_dir_step``.

    Peripheral desaturation and the debug view only run on the final
    (vertical) pass.
    """
    img, d = _prepare_inputs(color, depth)
    batch, _, height, width = img.shape
    uv = pixel_uv(batch, height, width, device=img.device, dtype=img.dtype)

    center_depth, focus_depth, sigma, ramp = blur_parameters(d, uv, config)
    weights = build_kernel(sigma, config.half_radius)

    sum_color, sum_weights = convolve(img, d, uv, center_depth, config.blur_dir_step, weights, config)
    linear = normalize_accumulation(sum_color, sum_weights, linearize(img, config.gamma))
    out = delinearize(linear, config.gamma)

    if peripheral_desaturation_enabled(config):
        out = desaturate_peripheral(out, ramp)
    if config.debug_view and config.is_final_pass:
        out = debug_visualization(out, center_depth, focus_depth, ramp, uv, config)

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "pass step=%s frame=%dx%d batch=%d mode=%s sigma=[%.3f, %.3f]",
            config.blur_dir_step, width, height, batch, config.render_mode.name,
            float(sigma.min()), float(sigma.max()),
        )
    return DofPassResult(image=out, depth=center_depth, sigma=sigma, ramp=ramp,
                         focus_depth=focus_depth.view(-1))


def pass_steps(width: int, height: int, step_scale: float = 1.0):
    """UV steps of the horizontal and vertical passes, ``step_scale`` texels per tap."""
    if step_scale <= 0:
        raise ValueError(f"step_scale must be > 0, got {step_scale}")
    return (step_scale / width, 0.0), (0.0, step_scale / height)


@torch.no_grad()
def render_frame(color: torch.Tensor, depth: torch.Tensor, config: DofConfig,
                 step_scale: float = 1.0) -> DofFrameResult:
    """Horizontal pass, then the vertical pass over its output."""
    img = _as_bchw(color)
    horizontal_step, vertical_step = pass_steps(img.size(-1), img.size(-2), step_scale)

    first = render_pass(img, depth, config.with_step(horizontal_step))
    second = render_pass(first.image, depth, config.with_step(vertical_step))
    return DofFrameResult(image=second.image, horizontal=first.image, depth=second.depth,
                          sigma=second.sigma, ramp=second.ramp, focus_depth=second.focus_depth)
