"""Registry access: version metadata and artifact pulling.

Two registry flavours are supported:
- GitHub Packages: versions come from the packages API, content is pulled
  by walking the manifest layers on ghcr.io
- Artifactory: the configured tag is the version, content is copied with ORAS
"""
