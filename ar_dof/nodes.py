# nodes.py
# ComfyUI nodes for the AR depth-of-field filter.
#
# - ARDofAnalyzer: depth -> per-pixel sigma / defocus ramp and a colour-coded map
# - ARDofPass: a single separable pass, so a graph can chain horizontal -> vertical
# - ARDepthOfField: the full two-pass frame plus a focus visualiser
#
# The nodes only translate widget values into a DofConfig and tensors between
# ComfyUI's BHWC layout and the filter's BCHW layout.

import torch

from .config import DepthEncoding, DofConfig, RenderMode
from .filter import (
    _as_bchw, _ensure_depth, _to_bhwc, blur_parameters, debug_visualization,
    defocus_overlay, pass_steps, pixel_uv, render_frame, render_pass,
)
from .log import get_logger

logger = get_logger(__name__)

_RENDER_MODES = {
    "screen_point": RenderMode.FOCUS_ON_SCREEN_POINT,
    "projected_point": RenderMode.FOCUS_ON_PROJECTED_POINT,
    "world_anchor": RenderMode.FOCUS_ON_WORLD_ANCHOR,
}
_DEPTH_ENCODINGS = [e.value for e in DepthEncoding]


def _focus_inputs():
    return {
        "render_mode": (list(_RENDER_MODES), {"default": "screen_point"}),
        "touch_x": ("FLOAT", {"default": 0.5, "min": 0.0, "max": 1.0, "step": 0.001}),
        "touch_y": ("FLOAT", {"default": 0.5, "min": 0.0, "max": 1.0, "step": 0.001}),
        "aperture": ("FLOAT", {"default": 0.5, "min": 0.0, "max": 8.0, "step": 0.01}),
    }


def _depth_inputs():
    return {
        # Depth window
        "anchor_depth": ("FLOAT", {"default": 0.0, "min": -4.0, "max": 4.0, "step": 0.001}),
        "min_depth": ("FLOAT", {"default": 0.0, "min": 0.0, "max": 100.0, "step": 0.01}),
        "depth_range": ("FLOAT", {"default": 1.0, "min": 0.001, "max": 100.0, "step": 0.01}),
        "depth_encoding": (_DEPTH_ENCODINGS, {"default": DepthEncoding.METERS.value}),
        "invert_depth": ("BOOLEAN", {"default": False}),

        # Ramp shaping
        "initial_sigma": ("FLOAT", {"default": 0.1, "min": 0.01, "max": 4.0, "step": 0.01}),
        "ramp_shift": ("FLOAT", {"default": 0.1, "min": 0.0, "max": 1.0, "step": 0.01}),
        "ramp_slope": ("FLOAT", {"default": 3.0, "min": 0.0, "max": 10.0, "step": 0.1}),
    }


def _blur_inputs():
    return {
        "half_radius": ("INT", {"default": 2, "min": 0, "max": 8, "step": 1}),
        "step_scale": ("FLOAT", {"default": 1.0, "min": 0.1, "max": 8.0, "step": 0.1}),
        "edge_aware": ("BOOLEAN", {"default": True}),
        "occlusion_sigma": ("FLOAT", {"default": 0.05, "min": 0.001, "max": 1.0, "step": 0.001}),
        "occlusion_cutoff": ("FLOAT", {"default": 0.05, "min": 0.0, "max": 1.0, "step": 0.001}),
        "greyscale_peripheral": ("BOOLEAN", {"default": False}),
    }


def _make_config(frame_hw, render_mode="screen_point", touch_x=0.5, touch_y=0.5, aperture=0.5,
                 anchor_depth=0.0, min_depth=0.0, depth_range=1.0,
                 depth_encoding=DepthEncoding.METERS.value,
                 initial_sigma=0.1, ramp_shift=0.1, ramp_slope=3.0,
                 half_radius=2, edge_aware=True, occlusion_sigma=0.05, occlusion_cutoff=0.05,
                 greyscale_peripheral=False, debug_view=False):
    # Clamp widget values to safe ranges
    aperture = max(0.0, aperture)
    if abs(depth_range) < 1e-6:
        depth_range = 1e-6
    height, width = frame_hw

    return DofConfig(
        render_mode=_RENDER_MODES[render_mode],
        greyscale_peripheral=greyscale_peripheral,
        min_depth=min_depth,
        depth_range=depth_range,
        aperture=aperture,
        aspect_ratio=(width / max(height, 1), 1.0),
        touch_position=(touch_x, touch_y, anchor_depth),
        half_radius=half_radius,
        initial_sigma=max(1e-3, initial_sigma),
        ramp_shift=ramp_shift,
        ramp_slope=ramp_slope,
        occlusion_sigma=max(1e-4, occlusion_sigma),
        occlusion_cutoff=occlusion_cutoff,
        depth_encoding=depth_encoding,
        edge_aware=edge_aware,
        debug_view=debug_view,
    )


def _prepare_depth(depth, invert: bool) -> torch.Tensor:
    d = _ensure_depth(depth)
    if invert:
        d = 1.0 - d.clamp(0.0, 1.0)
    return d


class ARDofAnalyzer:
    """
    Computes the per-pixel blur parameters without blurring anything.

    Useful for placing the focus point and tuning aperture and ramp shape
    before running the full filter.
    """

    @classmethod
    def INPUT_TYPES(cls):
        return {
            "required": {
                "depth": ("IMAGE",),
                **_focus_inputs(),
            },
            "optional": _depth_inputs(),
        }

    RETURN_TYPES = ("IMAGE", "MASK", "MASK", "FLOAT")
    RETURN_NAMES = ("defocus_map", "sigma", "ramp", "focus_depth")
    FUNCTION = "analyze"
    CATEGORY = "My Nodes/DOF"

    @torch.no_grad()
    def analyze(self, depth, render_mode="screen_point", touch_x=0.5, touch_y=0.5, aperture=0.5,
                invert_depth=False, **depth_options):
        """
        Returns:
            defocus_map: green in focus, red behind, blue in front of the focal plane
            sigma: per-pixel kernel standard deviation (in taps)
            ramp: shaped defocus in [0,1]
            focus_depth: normalized in-focus depth of the first batch item
        """
        d = _prepare_depth(depth, invert_depth)
        batch, _, height, width = d.shape
        config = _make_config((height, width), render_mode, touch_x, touch_y, aperture, **depth_options)

        uv = pixel_uv(batch, height, width, device=d.device, dtype=d.dtype)
        center_depth, focus_depth, sigma, ramp = blur_parameters(d, uv, config)
        defocus_map = defocus_overlay(center_depth, focus_depth, ramp)

        return (_to_bhwc(defocus_map), sigma, ramp, float(focus_depth.view(-1)[0]))


class ARDofPass:
    """
    One separable pass of the depth-of-field filter.

    Chain a horizontal pass into a vertical pass to get the full effect; the
    vertical pass is the one that applies peripheral desaturation.
    """

    @classmethod
    def INPUT_TYPES(cls):
        return {
            "required": {
                "image": ("IMAGE",),
                "depth": ("IMAGE",),
                "direction": (["horizontal", "vertical"], {"default": "horizontal"}),
                **_focus_inputs(),
            },
            "optional": {
                **_depth_inputs(),
                **_blur_inputs(),
                "debug_view": ("BOOLEAN", {"default": False}),
            },
        }

    RETURN_TYPES = ("IMAGE",)
    RETURN_NAMES = ("image",)
    FUNCTION = "apply_pass"
    CATEGORY = "My Nodes/DOF"

    @torch.no_grad()
    def apply_pass(self, image, depth, direction="horizontal", render_mode="screen_point",
                   touch_x=0.5, touch_y=0.5, aperture=0.5, invert_depth=False, step_scale=1.0,
                   **options):
        img = _as_bchw(image).clamp(0.0, 1.0)
        d = _prepare_depth(depth, invert_depth)
        height, width = img.shape[-2:]

        config = _make_config((height, width), render_mode, touch_x, touch_y, aperture, **options)
        horizontal_step, vertical_step = pass_steps(width, height, step_scale)
        config = config.with_step(horizontal_step if direction == "horizontal" else vertical_step)

        result = render_pass(img, d, config)
        return (_to_bhwc(result.image),)


class ARDepthOfField:
    """
    Depth-aware depth-of-field for AR camera frames.

    Runs the horizontal and vertical passes back to back and also returns a
    visualiser marking the focus point and the in-focus / near / far regions.
    """

    @classmethod
    def INPUT_TYPES(cls):
        return {
            "required": {
                "image": ("IMAGE",),
                "depth": ("IMAGE",),
                **_focus_inputs(),
            },
            "optional": {
                **_depth_inputs(),
                **_blur_inputs(),
                "overlay_opacity": ("FLOAT", {"default": 0.6, "min": 0.0, "max": 1.0, "step": 0.05}),
            },
        }

    RETURN_TYPES = ("IMAGE", "IMAGE", "MASK")
    RETURN_NAMES = ("image", "visualiser", "ramp")
    FUNCTION = "run"
    CATEGORY = "My Nodes/DOF"

    @torch.no_grad()
    def run(self, image, depth, render_mode="screen_point", touch_x=0.5, touch_y=0.5, aperture=0.5,
            invert_depth=False, step_scale=1.0, overlay_opacity=0.6, **options):
        try:
            img = _as_bchw(image).clamp(0.0, 1.0)
            d = _prepare_depth(depth, invert_depth)
        except ValueError as e:
            logger.error("rejected inputs: image %s, depth %s", tuple(image.shape), tuple(depth.shape))
            raise ValueError(f"Invalid input tensor format. Image shape: {tuple(image.shape)}, "
                             f"Depth shape: {tuple(depth.shape)}. Error: {e}") from e

        height, width = img.shape[-2:]
        config = _make_config((height, width), render_mode, touch_x, touch_y, aperture, **options)
        logger.info("depth of field %dx%d mode=%s aperture=%.3f", width, height, render_mode, config.aperture)

        frame = render_frame(img, d, config, step_scale=step_scale)

        uv = pixel_uv(img.size(0), height, width, device=img.device, dtype=img.dtype)
        vis = debug_visualization(img, frame.depth, frame.focus_depth.view(-1, 1, 1), frame.ramp, uv,
                                  config, opacity=overlay_opacity)

        return (_to_bhwc(frame.image), _to_bhwc(vis), frame.ramp)

