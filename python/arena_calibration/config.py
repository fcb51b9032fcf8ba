"""Pipeline configuration loaded from TOML."""

from dataclasses import dataclass, field, fields, asdict
import logging
from pathlib import Path
import tomllib
from typing import Dict, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "calibration_config.toml"

NUM_CAMERAS = 4


@dataclass
class FeatureConfig:
    detector_threshold: int = 10  # UI slider value, 10 = detector default
    max_features: int = 0  # 0 = unlimited


@dataclass
class MatcherConfig:
    match_conf: float = 0.6  # Ratio-test bound, slider value / 100
    min_matches: int = 6
    min_inliers: int = 6
    component_conf_threshold: float = 0.5


@dataclass
class AdjusterConfig:
    conf_thresh: float = 0.6
    refine_focal: bool = True  # K(0,0)
    refine_skew: bool = True  # K(0,1), accepted but never refined
    refine_ppx: bool = True  # K(0,2)
    refine_aspect: bool = True  # K(1,1)
    refine_ppy: bool = True  # K(1,2)
    max_iterations: int = 1000
    iterations_per_check: int = 100  # Solver iterations between cancellation checks
    tolerance: float = 1e-6  # Stop once a round changes no parameter by more than this
    wave_correction: str = "horiz"  # horiz, vert or none

    @property
    def refinement_mask(self) -> Dict[str, bool]:
        return {
            'focal': self.refine_focal,
            'skew': self.refine_skew,
            'ppx': self.refine_ppx,
            'aspect': self.refine_aspect,
            'ppy': self.refine_ppy,
        }


@dataclass
class CompositorConfig:
    warper: str = "plane"  # plane or spherical
    compose_size: Tuple[int, int] = (1536, 1536)
    blend_sharpness: float = 0.02
    gain_compensation: bool = True
    min_width: int = 100


@dataclass
class SquaringConfig:
    output_size: int = 2000


@dataclass
class SessionConfig:
    small_image_size: Tuple[int, int] = (300, 300)
    cancel_grace_s: float = 0.01


@dataclass
class PipelineConfig:
    """All tunables of the calibration pipeline, grouped per stage."""
    features: FeatureConfig = field(default_factory=FeatureConfig)
    matcher: MatcherConfig = field(default_factory=MatcherConfig)
    adjuster: AdjusterConfig = field(default_factory=AdjusterConfig)
    compositor: CompositorConfig = field(default_factory=CompositorConfig)
    squaring: SquaringConfig = field(default_factory=SquaringConfig)
    session: SessionConfig = field(default_factory=SessionConfig)

    @property
    def display_size(self) -> Tuple[int, int]:
        """Size of the panorama and squared previews (twice the small preview)."""
        w, h = self.session.small_image_size
        return 2 * w, 2 * h

    @classmethod
    def from_dict(cls, d):
        config = cls()
        for section in fields(cls):
            values = d.get(section.name, {})
            target = getattr(config, section.name)
            for f in fields(target):
                if f.name not in values:
                    continue
                value = values[f.name]
                if isinstance(getattr(target, f.name), tuple):
                    value = tuple(value)
                setattr(target, f.name, value)
            unknown = set(values) - {f.name for f in fields(target)}
            if unknown:
                logger.warning("Ignoring unknown [%s] keys: %s", section.name, sorted(unknown))
        return config

    @classmethod
    def load_toml(cls, config_path):
        with open(config_path, 'rb') as f:
            config = cls.from_dict(tomllib.load(f))
        logger.info("Loaded config: %s", config_path)
        return config

    @classmethod
    def load(cls, config_path=None):
        """Load a TOML config, falling back to the bundled defaults file."""
        if config_path is None and DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
        if config_path is None:
            return cls()
        return cls.load_toml(config_path)

    def to_dict(self):
        return asdict(self)

    def print_summary(self):
        print("\nPipeline Configuration:")
        print("-" * 50)
        for section, values in self.to_dict().items():
            print(f"[{section}]")
            for name, value in values.items():
                print(f"  {name} = {value}")
        print("-" * 50)
