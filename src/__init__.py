"""
HubProbe - X.509 Message Round-Trip Verification

Verifies that messages exchanged between a cloud messaging endpoint and an
edge-device client are delivered across every transport binding, using a
certificate-based device identity.
"""

__version__ = "1.0.0"
__author__ = "HubProbe Development Team"
