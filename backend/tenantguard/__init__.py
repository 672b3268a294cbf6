"""
tenantguard - hierarchical feature access control and usage-quota enforcement.
"""

__version__ = "0.1.0"
