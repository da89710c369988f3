from mbti_assess.models.session import SessionEntry
from mbti_assess.models.storage import StorageItem

__all__ = ["SessionEntry", "StorageItem"]
