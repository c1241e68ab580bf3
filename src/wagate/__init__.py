"""
wagate - a multi-session gateway for a chat messaging platform.

Each session pairs a token (usually the account's phone number) with one
underlying messaging client, tracks its authentication lifecycle, and
gates outbound messages on that lifecycle.
"""

__version__ = "0.1.0"
