"""
Config - Black Box Interface

Purpose: Populate the post-deployment configuration once at process start
Interface: EnvConfigProvider.load() -> PostDeploymentConfig
Hidden: Environment variable names, defaults, path conventions
"""

from .provider import ConfigProvider, EnvConfigProvider, PostDeploymentConfig

__all__ = ["ConfigProvider", "EnvConfigProvider", "PostDeploymentConfig"]
