import os
import tempfile

# Route data + logs to a scratch dir and never write the real config file.
# Must happen before anything imports candlebar.config.
_scratch = tempfile.mkdtemp(prefix="candlebar_test_")
os.environ.setdefault("CANDLEBAR_DATA_DIR", os.path.join(_scratch, "data"))
os.environ.setdefault("CANDLEBAR_LOGS_DIR", os.path.join(_scratch, "logs"))
os.environ["CANDLEBAR_PERSIST"] = "false"

import pytest  # noqa: E402

from candlebar.models.dashboard import (  # noqa: E402
    CustomDataSource,
    CustomDataValue,
    DashboardConfig,
    DashboardState,
    Stock,
)
from candlebar.services.config_store import ConfigStore  # noqa: E402


@pytest.fixture()
def store() -> ConfigStore:
    """In-memory store with the default configuration."""
    return ConfigStore()


@pytest.fixture()
def config_path(tmp_path):
    return tmp_path / "candlebar_config.json"


@pytest.fixture()
def btc_source() -> CustomDataSource:
    return CustomDataSource(
        name="btc",
        alias="Bitcoin",
        url="https://api.example.com/btc",
        path="data.price",
        previousPath="data.open",
        decimals=0,
    )


@pytest.fixture()
def populated_state(btc_source) -> DashboardState:
    """Two quoted stocks plus one custom value."""
    config = DashboardConfig(
        symbols=["AAPL", "MSFT"],
        aliases={"AAPL": "Apple"},
        customData=[btc_source],
    )
    return DashboardState(
        config=config,
        current_stocks=[
            Stock(symbol="AAPL", price=190.5, change_percent=1.234),
            Stock(symbol="MSFT", price=410.0, change_percent=-0.56),
        ],
        custom_values={
            "btc": CustomDataValue(value=64250.7, decimals=0, changePercent=2.5),
        },
    )
