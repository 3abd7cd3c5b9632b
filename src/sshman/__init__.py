"""
sshman — SSH key lifecycle manager.

Generates, rotates, archives and restores SSH key pairs while keeping
~/.ssh/config and the connection-profile store in step with the keys
that actually exist on disk.
"""

import os

__version__ = "0.1.0"
__author__ = "sshman"

SSHMAN_HOME = os.environ.get("SSHMAN_HOME", "~/.sshman")
