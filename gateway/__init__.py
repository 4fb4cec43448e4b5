"""
Modbus Gateway

Polls Modbus TCP/RTU field devices and republishes their current values
through an OPC UA server and an HTTP API.
"""

__version__ = "1.0.0"
