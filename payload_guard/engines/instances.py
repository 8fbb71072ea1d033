"""Global service registry and initialization manager.

This module acts as a singleton container for the application's shared
sanitizer. It reads the default profile from `settings` and resolves it
through the profile `registry` at startup.

Architecture Note:
    - The default engine is mandatory: if the configured default profile
      cannot be resolved, startup is aborted rather than serving requests
      with an unknown policy.
"""

import logging

from payload_guard.app.config import settings
from payload_guard.app.policy import registry
from payload_guard.engines.sanitizer_engine import SanitizerEngine

logger = logging.getLogger("payload_guard.services")

# Global Instances
# Populated by initialize_services() at startup.
sanitizer_service = None

def initialize_services():
    """Bootstraps the default sanitizer engine.

    Raises:
        ConfigurationError: If `settings.DEFAULT_PROFILE` is not a known profile.
    """
    global sanitizer_service

    try:
        logger.info("⚡ Initializing sanitizer service...")
        profile = registry.resolve(settings.DEFAULT_PROFILE)
        sanitizer_service = SanitizerEngine(profile)
        logger.info(f"✅ SanitizerEngine: Ready (profile '{settings.DEFAULT_PROFILE}')")
    except Exception as e:
        logger.critical(f"❌ Failed to initialize services: {e}")
        raise
