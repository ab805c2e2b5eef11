"""Component version manifest.

This module handles:
- Manifest schema validation (ComponentSpec)
- Loading manifests from YAML/JSON files
"""

from godwoken_imagegen.manifest.schema import ComponentSpec, ManifestSchema

__all__ = ["ComponentSpec", "ManifestSchema"]
