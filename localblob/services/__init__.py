"""LocalBlob services."""
