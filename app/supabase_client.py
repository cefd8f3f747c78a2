import os
from typing import Optional

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()  # Load .env variables before using them

_client: Optional[Client] = None


class PersistenceError(Exception):
    """Profile or history read/write against the remote store failed."""


def get_supabase() -> Client:
    global _client
    if _client is None:
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_KEY")
        if not url or not key:
            raise PersistenceError("SUPABASE_URL / SUPABASE_KEY are not set")
        _client = create_client(url, key)
    return _client
