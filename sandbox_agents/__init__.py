"""
Sandbox agents - repository analysis inside provisioned remote sandboxes.
"""

__version__ = "0.1.0"
