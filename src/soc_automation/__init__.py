"""
SOC Automation: playbook orchestration core

Reacts to security events by running automation playbooks made of
pluggable actions, and fans out rate-limited notifications.
"""

__version__ = "0.1.0"

from soc_automation.config.settings import Settings

__all__ = ["Settings", "__version__"]
