"""allocator-bot: datacap allocator application lifecycle tracker."""

__version__ = "0.1.0"
