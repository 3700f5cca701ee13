"""Pydantic configuration schemas for the MBG pipeline.

This module provides strictly typed configuration models. All configuration
validation, coercion, and normalization happens at schema validation time
via Pydantic.

Exports
-------
resolve_config : function
    Single entrypoint for configuration resolution
load_user_config_dict : function
    Load a CONFIG dict from a Python user config file
InternalConfig : class
    Fully validated, authoritative runtime configuration
ParamConfig : class
    Expert defaults (complete)
UserConfig : class
    User-facing configuration (forgiving, minimal)
"""

from mbg.schemas.resolve import resolve_config, load_user_config_dict
from mbg.schemas.internal import InternalConfig
from mbg.schemas.param import ParamConfig
from mbg.schemas.user import UserConfig

__all__ = [
    'resolve_config',
    'load_user_config_dict',
    'InternalConfig',
    'ParamConfig',
    'UserConfig',
]
