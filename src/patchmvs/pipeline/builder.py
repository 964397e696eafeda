"""Network construction from configuration."""

import logging

from ..checkpoint import load_checkpoint
from ..config import PatchMatchConfig
from ..model import PatchMatchNet

logger = logging.getLogger(__name__)


def build_model(config: PatchMatchConfig) -> PatchMatchNet:
    """Create the network, load its checkpoint and prepare it for inference.

    Args:
        config: Full configuration.

    Returns:
        PatchMatchNet on the configured device, in eval mode.

    Raises:
        ValueError: If the model configuration is invalid.
        FileNotFoundError: If the configured checkpoint does not exist.
    """
    device = config.runtime.device
    model = PatchMatchNet(config.model).to(device)

    if config.runtime.checkpoint_path:
        missing = load_checkpoint(model, config.runtime.checkpoint_path, device=device)
        if missing:
            logger.warning(
                "Model has %d entries without checkpoint values", len(missing)
            )
    else:
        logger.info("No checkpoint configured; using initialized weights")

    return model.eval()
