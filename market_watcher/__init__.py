"""
Market Watcher - Monitor a plugin market and send chat notifications.

A Python application that polls a plugin market index for added,
updated and removed packages and notifies subscribed chat channels.
"""

__version__ = "1.0.0"
__author__ = "Grégoire Compagnon"
__email__ = "obeone@obeone.org"
