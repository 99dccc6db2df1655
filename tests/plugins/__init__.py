"""
Tests for the SQL Server Keyset Backfill Plugin Modules

This package contains tests for the key-range pagination engine and the
modules that execute, persist and write its batches.
"""

import os
import sys

# Add plugins directory to Python path (Airflow does this automatically at runtime)
plugins_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..', 'plugins'))
if plugins_dir not in sys.path:
    sys.path.insert(0, plugins_dir)
