"""Watch cycle — the control loop that keeps the cluster on the latest artifact.

This package provides:
- Version resolution: what is currently published in the registry
- State: which version was last pulled and applied
- The reconciliation loop tying resolution, pulling, labelling and apply together
"""
