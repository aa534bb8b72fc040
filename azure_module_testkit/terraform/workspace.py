"""Per-unit copies of the module under test.

Parallel tenant units must not share a module directory: terraform keeps
``.terraform/``, the lock file and local state next to the configuration. Each
unit therefore works on its own copy of the module tree.
"""

import logging
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from ..runner import TenantTestContext

logger = logging.getLogger(__name__)

_IGNORED = shutil.ignore_patterns(
    ".terraform", "terraform.tfstate", "terraform.tfstate.*", "*.tfplan", ".git"
)


def copy_module_to_temp(
    root_dir: Union[str, Path],
    module_path: Union[str, Path] = ".",
    unique_id: str = "",
    base_temp_dir: Optional[Union[str, Path]] = None,
) -> Path:
    """Copy root_dir to a fresh temp directory and return the module's path in it.

    The whole root is copied, not just the module, so relative ``source``
    references between modules (``../../modules/...``) keep resolving.

    Args:
        root_dir: Directory that contains the module and everything it references
        module_path: Module directory relative to root_dir
        unique_id: Added to the temp directory name for easier debugging
        base_temp_dir: Parent for the temp directory (default: system temp)

    Returns:
        Path of the module inside the copy
    """
    root = Path(root_dir).resolve()
    if not root.is_dir():
        raise ValueError(f"Module root {root} does not exist")

    module_rel = Path(module_path)
    if module_rel.is_absolute():
        module_rel = module_rel.resolve().relative_to(root)
    if not (root / module_rel).is_dir():
        raise ValueError(f"Module directory {root / module_rel} does not exist")

    prefix = f"amt-{unique_id}-" if unique_id else "amt-"
    workspace = Path(tempfile.mkdtemp(prefix=prefix, dir=base_temp_dir))
    target = workspace / root.name
    shutil.copytree(root, target, ignore=_IGNORED)

    logger.debug(f"Copied {root} to {target}")
    return target / module_rel


def remove_workspace(module_dir: Union[str, Path]) -> None:
    """Delete the temp workspace that contains module_dir."""
    path = Path(module_dir).resolve()
    temp_root = Path(tempfile.gettempdir()).resolve()
    for parent in [path, *path.parents]:
        if parent.name.startswith("amt-"):
            shutil.rmtree(parent)
            logger.debug(f"Removed workspace {parent}")
            return
        if parent == temp_root:
            break
    raise ValueError(f"{module_dir} is not inside a testkit workspace")


def isolated_module_dir(
    ctx: "TenantTestContext",
    root_dir: Union[str, Path],
    module_path: Union[str, Path] = ".",
) -> Path:
    """Copy the module for this unit and register the copy's removal."""
    module_dir = copy_module_to_temp(root_dir, module_path, ctx.config.unique_id)
    ctx.defer(remove_workspace, module_dir, description=f"remove workspace {module_dir}")
    return module_dir
