"""Saving and loading network parameters."""

import logging
from pathlib import Path

import torch
import torch.nn as nn

logger = logging.getLogger(__name__)


def _read_state_dict(path: str | Path, device: str | torch.device) -> dict:
    """Read a parameter archive, unwrapping common container layouts."""
    data = torch.load(path, map_location=device, weights_only=True)
    for key in ("model", "state_dict"):
        if isinstance(data, dict) and isinstance(data.get(key), dict):
            return data[key]
    return data


def load_checkpoint(
    model: nn.Module,
    path: str | Path,
    key_map: dict[str, str] | None = None,
    device: str | torch.device = "cpu",
) -> list[str]:
    """Copy parameters and buffers from a saved archive into ``model``.

    Each entry is looked up first under its mapped name in ``key_map`` (for
    archives written with different module names), then under its own name.
    Entries missing from the archive keep their initialized values and are
    reported with one warning each; loading never aborts on them.

    Args:
        model: Network to load into.
        path: Path to a ``torch.save`` archive holding a state dict, or a dict
            with the state dict under ``"model"`` or ``"state_dict"``.
        key_map: Optional mapping from model names to archive names.
        device: Device to load tensors onto before copying.

    Returns:
        Names of parameters and buffers that were not found.

    Raises:
        FileNotFoundError: If the archive does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Checkpoint not found: {path}")

    logger.info("Loading checkpoint from %s", path)
    archive = _read_state_dict(path, device)
    key_map = key_map or {}

    missing = []
    entries = [
        ("parameter", model.named_parameters()),
        ("buffer", model.named_buffers()),
    ]
    with torch.no_grad():
        for kind, named in entries:
            for name, tensor in named:
                mapped = key_map.get(name)
                if mapped is not None and mapped in archive:
                    value = archive[mapped]
                elif name in archive:
                    value = archive[name]
                else:
                    logger.warning("Checkpoint does not contain %s: %s", kind, name)
                    missing.append(name)
                    continue
                tensor.copy_(value)

    if missing:
        logger.warning("%d entries missing from %s", len(missing), path)
    return missing


def save_checkpoint(model: nn.Module, path: str | Path) -> None:
    """Save parameters and buffers of ``model`` to ``path``.

    Args:
        model: Network to save.
        path: Output archive path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    torch.save(model.state_dict(), path)
