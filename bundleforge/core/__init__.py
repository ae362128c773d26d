"""Pipeline engines: cache, resolution, compilation, mutation, patching."""
