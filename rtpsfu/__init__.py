"""RTP parameter negotiation, validation and control objects for a selective forwarding unit."""

__version__ = "0.1.0"

__all__ = [
    "ortc",
    "payload_channel",
    "producer",
    "rtp_observer",
    "rtp_parameters",
    "scalability_modes",
    "validation",
]