from .gcs import generate_signed_url, generate_storage_key, get_bucket_name
from .store import interviews

__all__ = ["interviews", "generate_signed_url", "generate_storage_key", "get_bucket_name"]
