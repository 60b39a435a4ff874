#!/usr/bin/env python3
"""Development runner"""
from dumpkeeper.cli import main

if __name__ == '__main__':
    # Options fall back to DB_*, BACKUP_*, S3_* environment variables
    main()
