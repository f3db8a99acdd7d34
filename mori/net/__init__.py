"""
Mori — Transport seam

    transport.py — Transport protocol + in-memory RecordingTransport
    capture.py   — recorded inbound frames (save/load/replay)
"""

from mori.net.capture import Frame, FrameCapture, Marker
from mori.net.transport import RecordingTransport, SentMessage, Transport
