"""bundleforge CLI: Typer-based command-line interface.

Provides the ``bundleforge`` command for rendering configuration locally
and for pushing, fetching and inspecting blobs in the filesystem cache.

All output uses Rich for formatted terminal display.
"""
