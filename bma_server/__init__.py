"""BMA Music Server: local music library over HTTP for paired clients."""
