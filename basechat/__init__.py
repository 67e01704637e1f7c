"""
BaseChat: compare a base language model with its chat-tuned sibling,
running entirely on the local machine.
"""

__version__ = "0.1.0"
