"""Email Mirror - offline cache for a remote IMAP mailbox.

This package keeps a local, eventually consistent copy of a mailbox and
applies trash / restore / delete operations both locally and on the server,
reconciling message UIDs that change when the server copies a message.
"""

__version__ = "0.1.0"
__author__ = "Trickl"

from email_mirror.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__", "__author__"]
