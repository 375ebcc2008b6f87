# config.py
# Per-pass configuration for the AR depth-of-field filter.
#
# Everything the filter reads besides the two textures lives in one frozen
# DofConfig. A host changes values between passes with dataclasses.replace,
# never by mutating a shared instance.

import dataclasses
import enum
from dataclasses import dataclass, field
from typing import Any, Mapping, Tuple

Vec2 = Tuple[float, float]
Vec3 = Tuple[float, float, float]


class RenderMode(enum.IntEnum):
    FOCUS_ON_WORLD_ANCHOR = 0
    FOCUS_ON_SCREEN_POINT = 1
    FOCUS_ON_PROJECTED_POINT = 2


class DepthEncoding(enum.Enum):
    # normalized [0,1] view of a 16-bit millimetre buffer
    MILLIMETERS_16 = "millimeters16"
    # samples already hold depth in metres (or any unit matching min_depth/depth_range)
    METERS = "meters"


@dataclass(frozen=True)
class DepthUvRemap:
    """
    Bilinear quad mapping colour-frame UV into depth-texture UV.

    The depth image can be captured at another orientation or crop than the
    colour frame; the four corners give the depth UV seen at each corner of
    the colour frame.
    """
    top_left: Vec2 = (0.0, 0.0)
    top_right: Vec2 = (1.0, 0.0)
    bottom_left: Vec2 = (0.0, 1.0)
    bottom_right: Vec2 = (1.0, 1.0)

    @classmethod
    def identity(cls) -> "DepthUvRemap":
        return cls()

    @classmethod
    def from_pairs(cls, top, bottom) -> "DepthUvRemap":
        """Build from the host layout: ((tl, tr), (bl, br))."""
        (tl, tr), (bl, br) = top, bottom
        return cls(_vec(tl, 2, "top_left"), _vec(tr, 2, "top_right"),
                   _vec(bl, 2, "bottom_left"), _vec(br, 2, "bottom_right"))


def _vec(value, n: int, name: str) -> tuple:
    try:
        out = tuple(float(v) for v in value)
    except TypeError:
        raise ValueError(f"{name} must be a sequence of {n} numbers, got {value!r}")
    if len(out) != n:
        raise ValueError(f"{name} must have {n} components, got {len(out)}")
    return out


@dataclass(frozen=True)
class DofConfig:
    render_mode: RenderMode = RenderMode.FOCUS_ON_SCREEN_POINT
    greyscale_peripheral: bool = False
    min_depth: float = 0.0
    depth_range: float = 8.192
    aperture: float = 0.5
    aspect_ratio: Vec2 = (1.0, 1.0)
    touch_position: Vec3 = (0.5, 0.5, 0.0)
    blur_dir_step: Vec2 = (0.0, 0.0)
    depth_uv_remap: DepthUvRemap = field(default_factory=DepthUvRemap)

    # kernel / ramp shaping
    half_radius: int = 2
    initial_sigma: float = 0.1
    ramp_shift: float = 0.1
    ramp_slope: float = 3.0
    occlusion_sigma: float = 0.05
    occlusion_cutoff: float = 0.05
    gamma: float = 2.2

    depth_encoding: DepthEncoding = DepthEncoding.MILLIMETERS_16
    edge_aware: bool = True
    debug_view: bool = False

    def __post_init__(self):
        # frozen, so normalise through object.__setattr__
        set_ = _setter(self)
        try:
            set_("render_mode", RenderMode(self.render_mode))
        except ValueError:
            raise ValueError(f"render_mode must be one of {[m.value for m in RenderMode]}, got {self.render_mode!r}")
        try:
            set_("depth_encoding", DepthEncoding(self.depth_encoding))
        except ValueError:
            raise ValueError(f"depth_encoding must be one of {[e.value for e in DepthEncoding]}, got {self.depth_encoding!r}")

        set_("aspect_ratio", _vec(self.aspect_ratio, 2, "aspect_ratio"))
        set_("touch_position", _vec(self.touch_position, 3, "touch_position"))
        set_("blur_dir_step", _vec(self.blur_dir_step, 2, "blur_dir_step"))
        if not isinstance(self.depth_uv_remap, DepthUvRemap):
            set_("depth_uv_remap", DepthUvRemap.from_pairs(*self.depth_uv_remap))

        if self.aperture < 0:
            raise ValueError(f"aperture must be >= 0, got {self.aperture}")
        if self.depth_range == 0:
            raise ValueError("depth_range must be non-zero")
        if int(self.half_radius) != self.half_radius or self.half_radius < 0:
            raise ValueError(f"half_radius must be a non-negative integer, got {self.half_radius}")
        set_("half_radius", int(self.half_radius))
        if self.initial_sigma <= 0:
            raise ValueError(f"initial_sigma must be > 0, got {self.initial_sigma}")
        if self.occlusion_sigma <= 0:
            raise ValueError(f"occlusion_sigma must be > 0, got {self.occlusion_sigma}")
        if self.gamma <= 0:
            raise ValueError(f"gamma must be > 0, got {self.gamma}")

    @property
    def is_final_pass(self) -> bool:
        """The pass stepping only vertically is the last one of the frame."""
        return self.blur_dir_step[0] == 0.0

    def with_step(self, step: Vec2) -> "DofConfig":
        return dataclasses.replace(self, blur_dir_step=step)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "DofConfig":
        """
        Build a config from a host uniform dictionary.

        Keys may be field names or the host's camelCase uniform names
        (renderMode, minDepth, depthUvRemap, ...).
        """
        known = {f.name for f in dataclasses.fields(cls)}
        kwargs = {}
        for key, value in values.items():
            name = _HOST_NAMES.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown configuration key: {key!r}")
            kwargs[name] = value
        return cls(**kwargs)


def _setter(obj):
    def _set(name, value):
        object.__setattr__(obj, name, value)
    return _set


_HOST_NAMES = {
    "renderMode": "render_mode",
    "greyscalePeripheral": "greyscale_peripheral",
    "minDepth": "min_depth",
    "depthRange": "depth_range",
    "aspectRatio": "aspect_ratio",
    "touchPosition": "touch_position",
    "blurDirStep": "blur_dir_step",
    "depthUvRemap": "depth_uv_remap",
    "halfRadius": "half_radius",
    "initialSigma": "initial_sigma",
    "occlusionSigma": "occlusion_sigma",
    "occlusionCutoff": "occlusion_cutoff",
    "depthEncoding": "depth_encoding",
    "edgeAware": "edge_aware",
    "debugView": "debug_view",
}
