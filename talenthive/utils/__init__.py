"""
Utility modules: configuration, clock and bearer tokens
"""
from .clock import as_utc, utcnow
from .config_loader import PlatformSettings, Settings, load_platform_settings, load_settings
from .tokens import issue_token, verify_token

__all__ = [
    'as_utc',
    'utcnow',
    'PlatformSettings',
    'Settings',
    'load_platform_settings',
    'load_settings',
    'issue_token',
    'verify_token',
]
