"""
RelayCompass - VPN relay latency finder

Entry point for running as a module:
    python -m relaycompass [OPTIONS]
"""

from .cli import main

if __name__ == '__main__':
    main()
