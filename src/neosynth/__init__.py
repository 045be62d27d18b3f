"""NeoSynth authentication service.

Session and API-key gate, two-step login with trusted devices, and
credential lifecycle management for the NeoSynth media server.
"""

__version__ = "1.0.0"
