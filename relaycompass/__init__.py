"""
RelayCompass - VPN relay latency finder

Ranks Mullvad VPN relays by ICMP round-trip time from the current
location, probing many relays concurrently over one shared socket.
"""

__version__ = "1.0.0"
__author__ = "RelayCompass"
