from .cache import MessageCache
from .entities import ConversationStore, EntityStore, RoomStore, badge_count

__all__ = ["ConversationStore", "EntityStore", "MessageCache", "RoomStore", "badge_count"]
