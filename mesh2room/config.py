"""Threshold configuration for the room pipeline.

Every heuristic cutoff used by the classifier, room builder, reconstructor and
simplifier lives in RoomConfig so a test can perturb one value at a time.
YAML files may group keys under section headings; sections are flattened
before the values are applied."""

import os
from dataclasses import dataclass, fields, replace

import yaml

from .errors import ConfigError


@dataclass
class RoomConfig:
    # ── surface classifier ──
    classification_enabled: bool = True
    horizontal_threshold: float = 0.7      # normal.y above => floor, below -t => ceiling
    wall_threshold: float = 0.3            # |normal.y| below => wall
    protrusion_min_depth: float = 0.1      # m below ceiling
    protrusion_max_depth: float = 1.0
    height_sample_window: int = 100
    height_min_samples: int = 10
    floor_percentile: float = 0.25
    ceiling_percentile: float = 0.75
    edge_angle_threshold: float = 1.05     # rad, ~60 deg
    min_edge_length: float = 0.1
    max_edges: int = 50
    fragment_sample_faces: int = 100

    # ── occupancy grid openings ──
    grid_resolution: float = 0.1
    max_grid_cells: int = 200
    min_gap_size: float = 0.3
    door_min_width: float = 0.6
    door_max_width: float = 1.5
    door_min_height: float = 1.8
    door_max_height: float = 2.5
    door_max_bottom_from_floor: float = 0.05
    window_min_width: float = 0.3
    window_min_height: float = 0.3
    window_min_bottom_from_floor: float = 0.4
    opening_dedupe_distance: float = 0.5

    # ── room builder ──
    wall_height_tolerance: float = 0.15
    ceiling_reach_ratio: float = 0.85
    builder_window_min_from_floor: float = 0.5
    builder_window_min_height: float = 0.4
    pass_through_min_width: float = 0.4
    segment_merge_dot: float = 0.95
    segment_merge_distance: float = 0.3
    corner_perpendicular_dot: float = 0.3
    corner_snap_distance: float = 0.3
    min_wall_length: float = 0.3

    # ── wall reconstructor ──
    reconstructor_snap_distance: float = 0.15
    opening_proximity: float = 0.3
    opening_merge_gap: float = 0.05
    default_ceiling_height: float = 3.5
    min_room_height: float = 2.0
    double_sided: bool = True
    confirmed_door_width: float = 0.9
    confirmed_door_height: float = 2.1
    confirmed_window_width: float = 1.0
    confirmed_window_height: float = 1.2

    # ── room simplifier ──
    wall_base_tolerance: float = 0.3
    simplifier_grid: float = 0.1
    collinear_threshold_deg: float = 10.0
    right_angle_tolerance_deg: float = 15.0
    simplifier_snap_distance: float = 0.15
    duplicate_distance: float = 0.01


def field_names():
    return {f.name for f in fields(RoomConfig)}


def _read_yaml(path):
    if not os.path.exists(path):
        raise ConfigError(f"Config file not found: {path}")

    with open(path, "r") as f:
        try:
            return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML '{path}': {e}")


def _flatten(cfg):
    """Lift `section: {key: value}` groups into one flat mapping."""
    out = {}
    for k, v in cfg.items():
        if isinstance(v, dict):
            for sub_k, sub_v in _flatten(v).items():
                if sub_k in out:
                    raise ConfigError(f"Duplicate config key: '{sub_k}'")
                out[sub_k] = sub_v
        else:
            out[k] = v
    return out


def _merge(base, override):
    out = dict(base)
    out.update(override)
    return out


def validate(config):
    """Reject threshold combinations that make the pipeline incoherent."""
    for name in ("horizontal_threshold", "wall_threshold", "ceiling_reach_ratio",
                 "segment_merge_dot", "corner_perpendicular_dot",
                 "floor_percentile", "ceiling_percentile"):
        value = getattr(config, name)
        if not 0.0 < value <= 1.0:
            raise ConfigError(f"{name} must be in (0, 1], got {value}")

    if config.wall_threshold >= config.horizontal_threshold:
        raise ConfigError("wall_threshold must be below horizontal_threshold")
    if config.protrusion_min_depth >= config.protrusion_max_depth:
        raise ConfigError("protrusion_min_depth must be below protrusion_max_depth")
    if config.door_min_width > config.door_max_width:
        raise ConfigError("door width range is inverted")
    if config.door_min_height > config.door_max_height:
        raise ConfigError("door height range is inverted")

    for name in ("grid_resolution", "simplifier_grid", "min_gap_size", "min_wall_length"):
        if getattr(config, name) <= 0:
            raise ConfigError(f"{name} must be positive")

    for name in ("height_sample_window", "height_min_samples", "max_edges",
                 "max_grid_cells", "fragment_sample_faces"):
        if getattr(config, name) < 1:
            raise ConfigError(f"{name} must be at least 1")
    if config.height_min_samples > config.height_sample_window:
        raise ConfigError("height_min_samples exceeds height_sample_window")
    return config


def from_dict(values):
    known = field_names()
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
    return validate(replace(RoomConfig(), **values))


def load_config(path=None, overrides=None):
    """
    Builds a RoomConfig from defaults, an optional YAML file and a dict of
    overrides (highest precedence). Section headings in the YAML are ignored.
    """
    values = {}
    if path is not None:
        cfg = _read_yaml(path)
        if cfg is None:
            cfg = {}
        if not isinstance(cfg, dict):
            raise ConfigError(f"Config '{path}' must be a mapping")
        values = _flatten(cfg)

    if overrides:
        values = _merge(values, _flatten(overrides))

    return from_dict(values)
