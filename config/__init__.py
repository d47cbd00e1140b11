from .config_loader import config
from .config_loader import Config, SectionProxy, validate_settings

__all__ = ['config', 'Config', 'SectionProxy', 'validate_settings']
