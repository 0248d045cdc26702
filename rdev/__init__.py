"""rdev: remote build-and-run loop.

Watches a build artifact for changes, strips and compresses it, and
streams it to a remote runner that saves it as an executable and runs it.
"""

__version__ = "1.0.0"
__app_name__ = "rdev"
