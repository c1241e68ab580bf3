"""
Underlying messaging client drivers.

The configured driver is resolved by name (or dotted path) and turned
into a ``factory(token, credentials_dir)`` for the lifecycle controller.
"""

import importlib
from functools import partial

from wagate.logger import get_logger
from wagate.sessions.base import MessagingClient

logger = get_logger(__name__)

# Mapping of config name to module.class
DRIVER_MAP = {
    "bridge": "wagate.clients.bridge.BridgeClient",
}


def load_client_factory(config):
    """
    Resolve ``config.client_driver`` to a client factory.

    Raises:
        ValueError: If the driver cannot be imported or is not a MessagingClient.
    """
    driver = config.client_driver
    target = DRIVER_MAP.get(driver, driver)
    if "." not in target:
        raise ValueError(f"Unknown client driver: {driver}")

    module_path, class_name = target.rsplit(".", 1)
    try:
        module = importlib.import_module(module_path)
        client_class = getattr(module, class_name)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Could not load client driver '{driver}': {e}") from e

    if not (isinstance(client_class, type) and issubclass(client_class, MessagingClient)):
        raise ValueError(f"Client driver '{driver}' is not a MessagingClient")

    logger.info(f"Using client driver: {target}")
    return partial(client_class.from_config, config=config)
