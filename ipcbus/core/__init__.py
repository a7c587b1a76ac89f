"""Bus core — topic registry, pending-request table, broker pipeline, codec."""
