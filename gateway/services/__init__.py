"""
Gateway Services

- device      - Registry, connections, polling and the device store
- exposition  - Sink contract and the OPC UA server
- api         - HTTP query and management interface
"""
