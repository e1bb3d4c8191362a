"""health-node: systemd service health reporting with peer aggregation."""

__version__ = "0.1.0"
