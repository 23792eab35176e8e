# Sentinel Proxy service: follows the sentinel-reported primary and
# forces clients to reconnect on failover.
