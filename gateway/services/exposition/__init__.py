"""
Exposition - publishing decoded tag values downstream
"""

from .opcua_server import OpcUaSink
from .sink import ExpositionSink, SinkFanout, notify_sink

__all__ = ["ExpositionSink", "OpcUaSink", "SinkFanout", "notify_sink"]
