"""
Expose the loaded configuration as ``config``.

Importing from this module will load environment variables and
populate a singleton ``Config`` instance. Example:

    from sqlaccess.config import config
    print(config.COMMAND_TIMEOUT)
"""

from .env import config, Config, require_connection_string  # noqa: F401
