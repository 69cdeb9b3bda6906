"""Configuration schema and loader."""

from concord.config.loader import config_from_dict, find_config, load_config
from concord.config.schema import (
    AgentConfig,
    ConcordConfig,
    ConfidenceWeights,
    DebateConfig,
    ExecutionConfig,
    GitConfig,
    RetryConfig,
)

__all__ = [
    "AgentConfig",
    "ConcordConfig",
    "ConfidenceWeights",
    "DebateConfig",
    "ExecutionConfig",
    "GitConfig",
    "RetryConfig",
    "config_from_dict",
    "find_config",
    "load_config",
]
