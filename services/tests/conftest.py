"""
Top-level test configuration for scmgate.
"""

import os

# Ensure test-friendly defaults
os.environ.setdefault("SCMGATE_CONFIG_FILE", "/nonexistent/scmgate-test-config.yaml")
os.environ.setdefault("SCMGATE_JSON_LOGS", "false")
os.environ.setdefault("SCMGATE_LOG_LEVEL", "DEBUG")
