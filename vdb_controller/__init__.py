"""
VirtualDatabase controller: provisions AWS RDS instances for VirtualDatabases
and publishes their addresses as DatabaseEndpoints.
"""

__version__ = "0.1.0"
