# Browser module
from .cache import PathContainerCache
from .content_browser import ContentBrowser

__all__ = ["PathContainerCache", "ContentBrowser"]
