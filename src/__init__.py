"""
HLS Failover Proxy
Rewrites HLS manifests to annotate or skip server-side ad breaks and selects
between ad-free relay endpoints with automatic failover.
"""

__version__ = "0.3.1"
__description__ = "HLS manifest rewriting proxy with SSAI cue handling and relay failover"
