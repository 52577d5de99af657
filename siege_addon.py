"""
mitmdump script entry point for the siege proxy.

Configuration is read from the SIEGE_CONFIG environment variable (JSON), see
``siege_proxy.addon`` for the accepted keys.

Usage:
    mitmdump -p 9000 --mode reverse:http://127.0.0.1:8545 \
        --set connection_strategy=lazy -s siege_addon.py
"""

from siege_proxy.addon import SiegeAddon

# Create the addon instance
addons = [SiegeAddon.from_env()]
