#!/usr/bin/env python3
"""
Entrypoint for local runs.

    python3 server.py [-d] [--http-port 8443] [--document ./www] [--http-auth user:pass] ...
"""

from xterminal_broker.main import run


if __name__ == "__main__":
    run()
