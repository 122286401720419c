import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(Path(__file__).parent))
sys.path.insert(0, str(project_root / "scripts"))

import numpy as np
import pytest

from frontier_explorer.configs.config_loader import ExplorerConfig
from frontier_explorer.slam.interface import SLAMInterface
from doubles import FREE_P, UNKNOWN_P


@pytest.fixture
def fast_config():
    return ExplorerConfig(control_period_s=0.0, max_follow_iterations=400)


@pytest.fixture
def corner_block_grid():
    # 10x10 all free, 3x3 unknown block in the far corner
    probs = np.full((10, 10), FREE_P)
    probs[7:10, 7:10] = UNKNOWN_P
    return probs


@pytest.fixture
def slam():
    return SLAMInterface()
