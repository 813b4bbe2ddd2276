import pytest

from src.utils.config_loader import CREDENTIAL_ENV_VARS, default_config_path, load_config

YAML = """
exchange:
  simulation: true
trading:
  instrument_id: ETH-USDT-SWAP
  contract_value: 0.1
  poll_interval_seconds: 5
ai:
  model: deepseek-chat
"""

OVERRIDE_VARS = [
    "AUTOTRADER_INSTRUMENT_ID",
    "AUTOTRADER_POLL_INTERVAL_SECONDS",
    "AUTOTRADER_ANALYSIS_INTERVAL_SECONDS",
    "AUTOTRADER_AI_MODEL",
    "AUTOTRADER_SIMULATION",
    *CREDENTIAL_ENV_VARS.values(),
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in OVERRIDE_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path, text=YAML):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_loads_yaml_and_fills_empty_credentials(tmp_path):
    cfg = load_config(_write(tmp_path), force_reload=True)
    assert cfg["trading"]["instrument_id"] == "ETH-USDT-SWAP"
    assert cfg["credentials"] == {k: "" for k in CREDENTIAL_ENV_VARS}


def test_environment_overrides_yaml(tmp_path, monkeypatch):
    monkeypatch.setenv("AUTOTRADER_POLL_INTERVAL_SECONDS", "2.5")
    monkeypatch.setenv("AUTOTRADER_AI_MODEL", "deepseek-reasoner")
    monkeypatch.setenv("AUTOTRADER_SIMULATION", "false")
    monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-env")
    cfg = load_config(_write(tmp_path), force_reload=True)
    assert cfg["trading"]["poll_interval_seconds"] == 2.5
    assert cfg["ai"]["model"] == "deepseek-reasoner"
    assert cfg["exchange"]["simulation"] is False
    assert cfg["credentials"]["deepseek_api_key"] == "sk-env"


def test_cached_copy_is_not_shared(tmp_path):
    path = _write(tmp_path)
    first = load_config(path, force_reload=True)
    first["trading"]["instrument_id"] = "mutated"
    assert load_config(path)["trading"]["instrument_id"] == "ETH-USDT-SWAP"


def test_missing_section_fails_fast(tmp_path):
    path = _write(tmp_path, "exchange: {}\ntrading: {instrument_id: X, contract_value: 1}\n")
    with pytest.raises(ValueError, match="Missing required config sections: ai"):
        load_config(path, force_reload=True)


def test_non_positive_contract_value_fails(tmp_path):
    path = _write(tmp_path, YAML.replace("contract_value: 0.1", "contract_value: 0"))
    with pytest.raises(ValueError, match="contract_value"):
        load_config(path, force_reload=True)


def test_non_mapping_yaml_fails(tmp_path):
    with pytest.raises(ValueError, match="YAML mapping"):
        load_config(_write(tmp_path, "- a\n- b\n"), force_reload=True)


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", force_reload=True)


def test_shipped_config_is_valid():
    cfg = load_config(default_config_path(), force_reload=True)
    assert cfg["trading"]["instrument_id"] == "ETH-USDT-SWAP"
    assert cfg["exchange"]["simulation"] is True
