from . import metrics, ping, realtime, support_chats, tickets

__all__ = ["metrics", "ping", "realtime", "support_chats", "tickets"]
