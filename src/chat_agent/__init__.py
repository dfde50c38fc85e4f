"""Sentinel Chat Agent: coordinator-led group chat for connector setup"""

__version__ = "1.0.0"
