"""Component version resolution.

This module handles:
- Upstream ref lookup
- Source-tree content hashing
- Resolving manifest selectors, including follows chains
"""
