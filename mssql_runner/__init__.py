"""
MSSQL Backup Runner
Snapshot, local restore and point-in-time restore runners for SQL Server / Azure SQL Managed Instance
"""

__version__ = '1.0.0'
