"""Campus rewards notification delivery and state sync."""
