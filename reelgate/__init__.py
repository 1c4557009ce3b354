"""
reelgate - safety gate and publish scheduler for short-form video assets.

Decides whether a queued asset is safe to publish (optionally after automatic
remediation) and when a publishing profile is allowed to post it.
"""

__version__ = "0.3.0"
