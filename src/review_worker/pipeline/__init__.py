"""Job pipeline: review and reply processing."""
