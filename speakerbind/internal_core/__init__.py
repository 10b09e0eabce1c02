from .config import SessionConfig, load_config

__all__ = ["SessionConfig", "load_config"]
