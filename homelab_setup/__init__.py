"""Homelab Setup (resumable, idempotent first-boot provisioning).

Core design goals:
- Resumable via completion markers
- Idempotent steps that reconcile with image-provided resources
- Crash-safe configuration store
- Generated systemd units for compose stacks
- Centralized logging
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
