from .tree import Element, PollingHost, ScrollContainer

__all__ = ["Element", "PollingHost", "ScrollContainer"]
