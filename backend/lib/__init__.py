"""Backend utilities"""
from .supabase_client import get_supabase_client, reset_supabase_client
from .logger import setup_logging, get_logger, level_from_name

__all__ = ["get_supabase_client", "reset_supabase_client", "setup_logging", "get_logger", "level_from_name"]
