"""kaw — Kyverno Artifact Watcher.

Polls a container registry for new policy artifacts, pulls them, labels the
manifests they carry and applies them to the cluster with kubectl.
"""

__version__ = "0.3.0"
