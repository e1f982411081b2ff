"""
clm-integration: contract lifecycle ETL and integration message routing.
"""

__version__ = "0.1.0"
