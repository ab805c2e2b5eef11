"""Component build orchestration.

This module handles:
- Cache key computation
- Per-component build recipes
- Running toolchains
- Artifact collection and checksums
- Build-or-reuse per component
"""

# Submodules are imported directly (godwoken_imagegen.builds.cache_key, etc.)
# so that the cache and versions packages can use artifacts without cycles.
