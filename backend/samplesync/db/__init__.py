"""Database clients for the sample sync backend."""

from samplesync.db.sample_store import SampleStore, get_sample_store
from samplesync.db.supabase import SupabaseClient

__all__ = ["SampleStore", "SupabaseClient", "get_sample_store"]
