"""
Supabase client for session persistence.

Returns None when Supabase is not configured; the backend then keeps
sessions in memory.
"""
import os
from typing import Optional

from supabase import create_client, Client
from dotenv import load_dotenv

# Load environment variables
load_dotenv()
load_dotenv('../.env')  # Also try parent directory

_supabase_client: Optional[Client] = None


def get_supabase_client() -> Optional[Client]:
    """Get or create the Supabase client singleton, or None if unconfigured."""
    global _supabase_client

    if _supabase_client is None:
        url = os.getenv("SUPABASE_URL")
        # Service role key: the backend owns the sessions table
        key = os.getenv("SUPABASE_SERVICE_KEY")

        if not url or not key:
            return None

        _supabase_client = create_client(url, key)

    return _supabase_client


def reset_supabase_client():
    """Forget the cached client (used when settings change, e.g. in tests)."""
    global _supabase_client
    _supabase_client = None
