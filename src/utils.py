"""
Shared helper functions and utilities.

This module contains logging setup and configuration defaults, loading,
saving and validation used across the project.
"""

import copy
import json
import logging
import os

from candidates import ContourFilterConfig
from diagnostics import DiagnosticsConfig
from errors import ConfigurationError
from marker_detect import DetectionConfig
from preprocess import EdgeDetectionConfig, PreprocessingConfig

SECTION_TYPES = {
    'preprocessing': PreprocessingConfig,
    'edge_detection': EdgeDetectionConfig,
    'contour_filter': ContourFilterConfig,
    'detection': DetectionConfig,
    'diagnostics': DiagnosticsConfig,
}

DEFAULT_CONFIG = {
    # Frame source
    'video': {
        'camera_id': 0,
        'video_width': 1920,
        'video_height': 1080,
        'video_fps': 15,
        'camera_backend_priority': None,
        'camera_init_attempts': 10,
    },

    # Grayscale, blur (1 = off) and linear contrast
    'preprocessing': {
        'blur_kernel': 1,
        'contrast_alpha': 1.3,
        'brightness_beta': 20,
    },

    # Canny hysteresis thresholds
    'edge_detection': {
        'low_threshold': 30,
        'high_threshold': 100,
        'close_kernel': 3,
    },

    # Candidate envelope
    'contour_filter': {
        'min_area': 500,
        'max_area': 100000,
        'min_perimeter': 80,
        'epsilon_ratio': 0.02,
        'min_aspect': 0.8,
        'max_aspect': 1.25,
        'max_contours': 1000,
    },

    # Acceptance limits
    'detection': {
        'min_marker_edge_px': 40,
        'max_marker_edge_px': 200,
        'min_confidence': 0.7,
    },

    # Throttled snapshots
    'diagnostics': {
        'enabled': False,
        'output_dir': 'debug_output',
        'movement_threshold_px': 30.0,
        'background_writes': True,
        'save_crops': True,
    },

    'verbose': False,
}


def setup_logging(level=logging.INFO):
    """Set up logging configuration.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger = logging.getLogger(__name__)
    logger.info("Logging initialized")


def get_config(config_path=None):
    """Load configuration from file or return defaults.

    Sections present in the file replace matching keys of the default
    section; unknown sections are kept as-is.

    Args:
        config_path: Path to JSON configuration file (optional)

    Returns:
        dict: Configuration dictionary
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                loaded_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logging.warning(f"Failed to load config from {config_path}: {e}")
            return config

        for key, value in loaded_config.items():
            if isinstance(value, dict) and isinstance(config.get(key), dict):
                config[key].update(value)
            else:
                config[key] = value
        logging.info(f"Configuration loaded from {config_path}")
    elif config_path:
        logging.warning(f"Config file {config_path} not found, using default values")

    return config


def save_config(config, config_path):
    """Save configuration to file.

    Args:
        config: Configuration dictionary
        config_path: Path to save configuration file

    Returns:
        bool: True if save successful, False otherwise
    """
    try:
        with open(config_path, 'w') as f:
            json.dump(config, f, indent=4)
        logging.info(f"Configuration saved to {config_path}")
        return True
    except (OSError, TypeError) as e:
        logging.error(f"Failed to save config to {config_path}: {e}")
        return False


def validate_config(config):
    """Validate configuration parameters.

    Args:
        config: Configuration dictionary

    Returns:
        bool: True if valid, False otherwise
    """
    for section, cls in SECTION_TYPES.items():
        if section not in config:
            logging.error(f"Missing required config section: {section}")
            return False

        values = config[section]
        unknown = set(values) - set(cls.__dataclass_fields__)
        if unknown:
            logging.error(f"Unknown keys in config section {section}: {sorted(unknown)}")
            return False

        try:
            cls(**values).validate()
        except (ConfigurationError, TypeError) as e:
            logging.error(f"Invalid config section {section}: {e}")
            return False

    logging.info("Configuration validated successfully")
    return True
