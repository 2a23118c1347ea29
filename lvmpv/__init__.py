"""Node-local LVM volume provisioning: controllers, responses and usage reporting."""

__version__ = "0.1.0"