from .postgrest import PostgrestSink

__all__ = ["PostgrestSink"]
