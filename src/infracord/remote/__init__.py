"""
Access to the remote Discord guild.

- **remote_client.py**: The RemotePlatform protocol the core depends on and its
  py-cord implementation, which turns HTTP failures into RemotePlatformError.
"""
