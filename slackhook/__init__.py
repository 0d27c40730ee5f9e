from .bot import SlackHookPlugin

__all__ = ["SlackHookPlugin"]
